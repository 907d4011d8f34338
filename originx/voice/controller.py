from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Protocol

from originx.orchestrator.clock import CLOCK, Clock
from originx.orchestrator.events import VoiceState
from originx.orchestrator.policies import VoiceTimings
from originx.telemetry.logging import get_logger
from originx.transcription.base import RecognitionSource
from originx.voice.endpointing import silence_timeout

SubmitTurn = Callable[[str], Awaitable[str | None]]
StateListener = Callable[[VoiceState, dict[str, Any]], Awaitable[None]]
Notifier = Callable[[str], Awaitable[None]]

PERMISSION_DENIED = {"not-allowed", "service-not-allowed"}
PERMISSION_MESSAGE = "Microphone access was denied. Allow microphone access in your browser to keep talking."


class SpeechSynthesizer(Protocol):
    async def speak_text(
        self,
        text: str,
        voice_config: Mapping[str, float | str] | None = None,
        on_start: Callable[[], Awaitable[None]] | None = None,
    ) -> None: ...

    def is_currently_playing(self) -> bool: ...

    async def stop(self) -> None: ...


class VoiceTurnController:
    """Turn-taking between the user's microphone and the companion's voice.

    Recognition is hard-stopped before any playback begins and only resumes
    after playback has finished and the settle delay has elapsed. When the
    two conflict, silence wins.
    """

    def __init__(
        self,
        recognition: RecognitionSource,
        synthesizer: SpeechSynthesizer,
        submit_turn: SubmitTurn,
        timings: VoiceTimings | None = None,
        clock: Clock = CLOCK,
        on_state_change: StateListener | None = None,
        notify: Notifier | None = None,
        voice_config: Mapping[str, float | str] | None = None,
    ) -> None:
        self._recognition = recognition
        self._synth = synthesizer
        self._submit_turn = submit_turn
        self._timings = timings or VoiceTimings()
        self._clock = clock
        self._on_state_change = on_state_change
        self._notify = notify
        self._voice_config = dict(voice_config or {})
        self._logger = get_logger(__name__)

        self._mic_lock = asyncio.Lock()
        self._voice_mode = False
        self._muted = False
        self._listening = False
        self._ai_speaking = False
        self._awaiting_reply = False
        self._permission_denied = False
        self._error_retries = 0
        self._transcript = ""
        self._speaking_text: str | None = None
        self._speech_task: asyncio.Task | None = None
        self._silence_task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None
        self._submit_task: asyncio.Task | None = None
        self._last_state: VoiceState = "idle"

    @property
    def state(self) -> VoiceState:
        if self._muted:
            return "muted"
        if self._ai_speaking:
            return "ai_speaking"
        if self._listening:
            return "listening"
        return "idle"

    @property
    def voice_mode(self) -> bool:
        return self._voice_mode

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def ai_speaking(self) -> bool:
        return self._ai_speaking

    @property
    def permission_denied(self) -> bool:
        return self._permission_denied

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "voice_mode": self._voice_mode,
            "muted": self._muted,
            "listening": self._listening,
            "ai_speaking": self._ai_speaking,
            "permission_denied": self._permission_denied,
        }

    async def enter_voice_mode(self) -> None:
        self._voice_mode = True
        self._error_retries = 0
        self._logger.info("voice.mode.entered", muted=self._muted)
        await self._start_listening()
        await self._emit()

    async def exit_voice_mode(self) -> None:
        self._voice_mode = False
        self._transcript = ""
        self._cancel_timers()
        self._cancel_submission()
        await self._stop_listening()
        await self._abort_speech()
        self._logger.info("voice.mode.exited")
        await self._emit()

    async def mute(self) -> None:
        self._muted = True
        self._transcript = ""
        self._cancel_timers()
        self._cancel_submission()
        await self._stop_listening()
        await self._abort_speech()
        self._logger.info("voice.muted")
        await self._emit()

    async def unmute(self) -> None:
        self._muted = False
        self._error_retries = 0
        self._logger.info("voice.unmuted", ai_speaking=self._ai_speaking)
        await self._start_listening()
        await self._emit()

    async def grant_permission(self) -> None:
        """Explicit user action after a permission denial; the only way back to listening."""
        self._permission_denied = False
        self._error_retries = 0
        await self._start_listening()
        await self._emit()

    async def handle_event(self, event: Mapping[str, Any]) -> None:
        """Route a recognition message from the client socket."""
        kind = event.get("type")
        if kind == "recognition.result":
            await self.on_transcript(str(event.get("text", "")), bool(event.get("is_final", False)))
        elif kind == "recognition.error":
            await self.on_recognition_error(str(event.get("error", "unknown")))
        elif kind == "recognition.end":
            await self.on_recognition_end()
        elif kind == "permission.granted":
            await self.grant_permission()
        else:
            self._logger.debug("voice.event.ignored", type=kind)

    async def on_transcript(self, text: str, is_final: bool) -> None:
        if not self._listening or self._ai_speaking or self._awaiting_reply:
            self._logger.debug("voice.transcript.ignored", final=is_final)
            return
        self._error_retries = 0
        self._transcript = text
        self._cancel(self._silence_task)
        self._silence_task = None
        if is_final:
            # the socket loop keeps reading while the reply is generated and spoken,
            # and the mic stays down until the submission settles
            self._awaiting_reply = True
            self._submit_task = asyncio.create_task(self._submit(), name="voice-submit")
            return
        delay = silence_timeout(text, self._timings)
        self._silence_task = asyncio.create_task(self._submit_after(delay), name="voice-silence")

    async def on_recognition_error(self, error: str) -> None:
        self._listening = False
        if error == "aborted":
            self._logger.debug("voice.recognition.aborted")
            return
        if error in PERMISSION_DENIED:
            self._permission_denied = True
            self._cancel_timers()
            self._logger.warning("voice.recognition.permission_denied", error=error)
            if self._notify is not None:
                await self._notify(PERMISSION_MESSAGE)
            await self._emit()
            return
        if error == "no-speech":
            self._logger.debug("voice.recognition.no_speech")
            self._schedule_restart(self._timings.no_speech_retry_s)
            return
        if self._error_retries >= 1:
            self._logger.warning("voice.recognition.gave_up", error=error)
            await self._emit()
            return
        self._error_retries += 1
        self._logger.info("voice.recognition.retry", error=error)
        self._schedule_restart(self._timings.error_retry_s)

    async def on_recognition_end(self) -> None:
        if not self._listening:
            return
        # recognition stopped on its own while we still expected it to run
        self._listening = False
        self._logger.debug("voice.recognition.ended")
        await self._start_listening()

    async def speak(self, text: str) -> bool:
        """Voice ``text`` with the microphone hard-stopped; return whether playback succeeded."""
        text = text.strip()
        if not text:
            return False
        if self._speaking_text == text:
            self._logger.info("voice.speak.duplicate_suppressed")
            return False
        await self._abort_speech()
        self._speaking_text = text
        self._ai_speaking = True
        self._cancel_timers()
        await self._stop_listening()
        await self._emit()

        async def on_start() -> None:
            self._logger.debug("voice.playback.started")
            await self._emit({"text": text, "playback": "started"})

        task = asyncio.create_task(
            self._synth.speak_text(text, self._voice_config or None, on_start=on_start),
            name="voice-speech",
        )
        self._speech_task = task
        success = False
        try:
            await asyncio.wait({task})
            if task.cancelled():
                self._logger.info("voice.playback.aborted")
            elif task.exception() is not None:
                self._logger.warning("voice.playback.failed", error=str(task.exception()))
            else:
                success = True
                while self._synth.is_currently_playing() and self._speech_task is task:
                    await self._clock.sleep(0.05)
            await self._clock.sleep(self._timings.settle_s if success else self._timings.failure_settle_s)
        finally:
            if self._speech_task is task:
                self._speech_task = None
            if self._speech_task is None:
                self._speaking_text = None
                self._ai_speaking = False
        self._logger.info("voice.playback.finished", success=success)
        await self._start_listening()
        await self._emit()
        return success

    async def close(self) -> None:
        await self.exit_voice_mode()

    def _can_listen(self) -> bool:
        return (
            self._voice_mode
            and not self._muted
            and not self._ai_speaking
            and not self._awaiting_reply
            and not self._permission_denied
        )

    async def _start_listening(self) -> None:
        async with self._mic_lock:
            if self._listening or not self._can_listen():
                return
            await self._recognition.start()
            self._listening = True
        self._logger.info("voice.recognition.started")

    async def _stop_listening(self) -> None:
        async with self._mic_lock:
            if not self._listening:
                return
            self._listening = False
            await self._recognition.stop()
        self._logger.info("voice.recognition.stopped")

    async def _submit_after(self, delay: float) -> None:
        await self._clock.sleep(delay)
        self._silence_task = None
        await self._submit()

    async def _submit(self) -> None:
        text = self._transcript.strip()
        self._transcript = ""
        if len(text) <= 1:
            self._awaiting_reply = False
            await self._start_listening()
            return
        self._awaiting_reply = True
        await self._stop_listening()
        await self._emit({"transcript": text})
        self._logger.info("voice.turn.submitted", chars=len(text))
        try:
            reply = await self._submit_turn(text)
        except Exception:
            self._logger.exception("voice.turn.failed")
            reply = None
        finally:
            self._awaiting_reply = False
        if reply and self._voice_mode:
            await self.speak(reply)
        else:
            await self._start_listening()
            await self._emit()

    async def _abort_speech(self) -> None:
        task = self._speech_task
        if task is None or task.done():
            return
        self._speech_task = None
        task.cancel()
        await self._synth.stop()
        self._logger.info("voice.speech.aborted")

    def _schedule_restart(self, delay: float) -> None:
        self._cancel(self._restart_task)
        self._restart_task = asyncio.create_task(self._restart_after(delay), name="voice-restart")

    async def _restart_after(self, delay: float) -> None:
        await self._clock.sleep(delay)
        self._restart_task = None
        await self._start_listening()
        await self._emit()

    def _cancel_timers(self) -> None:
        self._cancel(self._silence_task)
        self._cancel(self._restart_task)
        self._silence_task = None
        self._restart_task = None

    def _cancel_submission(self) -> None:
        self._cancel(self._submit_task)
        self._submit_task = None
        self._awaiting_reply = False

    @staticmethod
    def _cancel(task: asyncio.Task | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _emit(self, detail: dict[str, Any] | None = None) -> None:
        state = self.state
        if detail is None and state == self._last_state:
            return
        self._last_state = state
        if self._on_state_change is None:
            return
        try:
            await self._on_state_change(state, {**self.snapshot(), **(detail or {})})
        except Exception as exc:  # pragma: no cover - UI delivery is best effort
            self._logger.warning("voice.state.publish_failed", error=str(exc))


__all__ = [
    "PERMISSION_MESSAGE",
    "SpeechSynthesizer",
    "SubmitTurn",
    "VoiceTurnController",
]
