from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol
from uuid import uuid4

from originx.config import SpeechSettings
from originx.telemetry.logging import get_logger
from originx.transcription.base import CommandChannel
from originx.tts.elevenlabs import (
    MP3_FORMAT,
    PCM_SAMPLE_RATE,
    ElevenLabsClient,
    SpeechSynthesisError,
    split_voice_config,
)

StartHook = Callable[[], Awaitable[None]]
VoiceConfig = Mapping[str, float | str]


class PlaybackDevice(Protocol):
    def is_playing(self, tag: str | None = None) -> bool: ...

    async def play_pcm16(self, audio: bytes, samplerate: int, tag: str, on_start: Any = None) -> float: ...

    async def stop(self, tag: str | None = None) -> bool: ...


def new_speech_tag() -> str:
    return f"tts:{uuid4().hex[:8]}"


class LocalSpeechChannel:
    """One user's speech on the server's own speaker.

    The device is shared, so the channel only ever checks and stops the clip
    it started itself.
    """

    def __init__(self, client: ElevenLabsClient, device: PlaybackDevice) -> None:
        self._client = client
        self._device = device
        self._tag: str | None = None
        self._logger = get_logger(__name__)

    async def speak_text(
        self,
        text: str,
        voice_config: VoiceConfig | None = None,
        on_start: StartHook | None = None,
    ) -> None:
        voice_id, overrides = split_voice_config(voice_config)
        audio = await self._client.synthesize(text, voice_id=voice_id, voice_overrides=overrides)
        tag = new_speech_tag()
        self._tag = tag
        try:
            duration = await self._device.play_pcm16(audio, PCM_SAMPLE_RATE, tag, on_start=on_start)
        finally:
            if self._tag == tag:
                self._tag = None
        self._logger.info("speech.local.played", tag=tag, duration_s=round(duration, 2))

    def is_currently_playing(self) -> bool:
        return self._tag is not None and self._device.is_playing(self._tag)

    async def stop(self) -> None:
        tag = self._tag
        if tag is not None:
            await self._device.stop(tag)

    async def handle_event(self, event: Mapping[str, Any]) -> bool:
        return False


@dataclass(slots=True)
class _Playback:
    tag: str
    started: asyncio.Future
    ended: asyncio.Future


class BrowserSpeechChannel:
    """One user's speech played by their own browser.

    Audio goes out over the state socket as a ``speech.play`` command. The
    browser answers with ``speech.started`` and ``speech.ended`` (or
    ``speech.error``) carrying the same tag, and those events drive
    ``on_start`` and completion.
    """

    def __init__(
        self,
        client: ElevenLabsClient,
        channel: CommandChannel,
        user_id: str,
        playback_timeout_s: float = 120.0,
    ) -> None:
        self._client = client
        self._channel = channel
        self._user_id = user_id
        self._timeout_s = playback_timeout_s
        self._pending: _Playback | None = None
        self._logger = get_logger(__name__)

    async def speak_text(
        self,
        text: str,
        voice_config: VoiceConfig | None = None,
        on_start: StartHook | None = None,
    ) -> None:
        voice_id, overrides = split_voice_config(voice_config)
        audio = await self._client.synthesize(
            text, voice_id=voice_id, voice_overrides=overrides, output_format=MP3_FORMAT
        )
        loop = asyncio.get_running_loop()
        playback = _Playback(tag=new_speech_tag(), started=loop.create_future(), ended=loop.create_future())
        self._pending = playback
        try:
            delivered = await self._channel.send_command(
                self._user_id,
                "speech.play",
                {
                    "tag": playback.tag,
                    "content_type": "audio/mpeg",
                    "audio_base64": base64.b64encode(audio).decode("ascii"),
                },
            )
            if not delivered:
                raise SpeechSynthesisError("No client connected to play speech")
            await asyncio.wait_for(self._follow(playback, on_start), timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            self._logger.warning("speech.browser.timeout", user_id=self._user_id, tag=playback.tag)
            raise SpeechSynthesisError(f"Playback {playback.tag} did not finish in {self._timeout_s}s") from exc
        finally:
            if self._pending is playback:
                self._pending = None
        self._logger.info("speech.browser.played", user_id=self._user_id, tag=playback.tag)

    async def _follow(self, playback: _Playback, on_start: StartHook | None) -> None:
        await playback.started
        if on_start is not None:
            await on_start()
        await playback.ended

    def is_currently_playing(self) -> bool:
        playback = self._pending
        return playback is not None and playback.started.done() and not playback.ended.done()

    async def stop(self) -> None:
        playback = self._pending
        if playback is None:
            return
        self._pending = None
        _resolve(playback.started)
        _resolve(playback.ended)
        await self._channel.send_command(self._user_id, "speech.stop", {"tag": playback.tag})
        self._logger.info("speech.browser.stopped", user_id=self._user_id, tag=playback.tag)

    async def handle_event(self, event: Mapping[str, Any]) -> bool:
        """Apply a ``speech.*`` event from the browser; events for other clips are dropped."""
        kind = event.get("type")
        playback = self._pending
        if playback is None or event.get("tag") != playback.tag:
            self._logger.debug("speech.browser.stale_event", type=kind, tag=event.get("tag"))
            return False
        if kind == "speech.started":
            _resolve(playback.started)
        elif kind == "speech.ended":
            _resolve(playback.started)
            _resolve(playback.ended)
        elif kind == "speech.error":
            error = SpeechSynthesisError(f"Browser playback failed: {event.get('error', 'unknown')}")
            if not playback.started.done():
                playback.started.set_exception(error)
                playback.ended.cancel()
            elif not playback.ended.done():
                playback.ended.set_exception(error)
        else:
            return False
        return True


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


SpeechChannel = LocalSpeechChannel | BrowserSpeechChannel
SpeechChannelFactory = Callable[[str], SpeechChannel]


def speech_channel_factory(
    settings: SpeechSettings,
    client: ElevenLabsClient,
    commands: CommandChannel,
) -> SpeechChannelFactory:
    """Build the per-user channel constructor for the configured playback mode."""
    if settings.playback == "local":
        # sounddevice needs PortAudio, so it is only loaded for speaker playback
        from originx.audio.output import AudioOutputController

        device = AudioOutputController()
        return lambda user_id: LocalSpeechChannel(client, device)
    return lambda user_id: BrowserSpeechChannel(client, commands, user_id, settings.playback_timeout_s)


__all__ = [
    "BrowserSpeechChannel",
    "LocalSpeechChannel",
    "PlaybackDevice",
    "SpeechChannel",
    "SpeechChannelFactory",
    "new_speech_tag",
    "speech_channel_factory",
]
