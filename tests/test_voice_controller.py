from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from originx.config import SpeechSettings
from originx.transcription.base import RemoteRecognitionSource
from originx.tts.elevenlabs import ElevenLabsClient, SpeechSynthesisError
from originx.tts.playback import BrowserSpeechChannel, LocalSpeechChannel
from originx.voice.controller import PERMISSION_MESSAGE, VoiceTurnController
from originx.voice.endpointing import silence_timeout


class FakeRecognition:
    def __init__(self, log: list[str]) -> None:
        self.log = log

    async def start(self) -> None:
        self.log.append("mic_start")

    async def stop(self) -> None:
        self.log.append("mic_stop")


class FakeSynth:
    def __init__(self, log: list[str], gate: asyncio.Event | None = None, error: Exception | None = None) -> None:
        self.log = log
        self.gate = gate
        self.error = error
        self.spoken: list[str] = []
        self.stops = 0

    async def speak_text(self, text, voice_config=None, on_start=None) -> None:
        self.spoken.append(text)
        self.log.append("play_start")
        if on_start is not None:
            await on_start()
        if self.error is not None:
            raise self.error
        if self.gate is not None:
            await self.gate.wait()
        self.log.append("play_end")

    def is_currently_playing(self) -> bool:
        return False

    async def stop(self) -> None:
        self.stops += 1
        self.log.append("play_stop")


async def drain(rounds: int = 30) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def build(clock, reply: str | None = "Sounds lovely!", gate=None, error=None):
    log: list[str] = []
    submitted: list[str] = []
    states: list[str] = []
    notices: list[str] = []

    async def submit(text: str) -> str | None:
        submitted.append(text)
        return reply

    async def on_state(state: str, detail: dict) -> None:
        states.append(state)

    async def notify(message: str) -> None:
        notices.append(message)

    synth = FakeSynth(log, gate=gate, error=error)
    controller = VoiceTurnController(
        FakeRecognition(log),
        synth,
        submit,
        clock=clock,
        on_state_change=on_state,
        notify=notify,
    )
    return controller, synth, log, submitted, states, notices


def test_silence_timeout_rules() -> None:
    assert silence_timeout("that is all.") == 0.8
    assert silence_timeout("really?") == 0.8
    assert silence_timeout("hello there") == 2.0
    assert silence_timeout("I would like a painting") == 1.5


@pytest.mark.anyio("asyncio")
async def test_microphone_is_stopped_before_playback_and_resumed_after(evening_clock) -> None:
    controller, synth, log, _, states, _ = build(evening_clock)
    await controller.enter_voice_mode()
    assert controller.state == "listening"

    assert await controller.speak("Hello there!") is True
    assert log == ["mic_start", "mic_stop", "play_start", "play_end", "mic_start"]
    assert 0.5 in evening_clock.sleeps
    assert controller.state == "listening"
    assert states[:2] == ["listening", "ai_speaking"]
    assert states[-1] == "listening"


@pytest.mark.anyio("asyncio")
async def test_final_transcript_is_submitted_and_reply_spoken(evening_clock) -> None:
    controller, synth, log, submitted, _, _ = build(evening_clock)
    await controller.enter_voice_mode()
    await controller.handle_event({"type": "recognition.result", "text": "draw me a cat", "is_final": True})
    await drain()
    assert submitted == ["draw me a cat"]
    assert synth.spoken == ["Sounds lovely!"]
    assert log == ["mic_start", "mic_stop", "play_start", "play_end", "mic_start"]


@pytest.mark.anyio("asyncio")
async def test_interim_transcript_submits_after_silence(evening_clock) -> None:
    controller, _, _, submitted, _, _ = build(evening_clock, reply=None)
    await controller.enter_voice_mode()
    await controller.on_transcript("I would like a", False)
    await controller.on_transcript("I would like a painting", False)
    await drain()
    assert submitted == ["I would like a painting"]
    assert evening_clock.sleeps == [1.5]
    assert controller.listening is True


@pytest.mark.anyio("asyncio")
async def test_single_character_is_not_submitted(evening_clock) -> None:
    controller, _, _, submitted, _, _ = build(evening_clock)
    await controller.enter_voice_mode()
    await controller.on_transcript("a", True)
    await drain()
    assert submitted == []
    assert controller.listening is True


@pytest.mark.anyio("asyncio")
async def test_transcripts_are_ignored_while_speaking(evening_clock) -> None:
    gate = asyncio.Event()
    controller, synth, _, submitted, _, _ = build(evening_clock, gate=gate)
    await controller.enter_voice_mode()
    task = asyncio.create_task(controller.speak("Let me tell you a story"))
    await drain()
    assert controller.state == "ai_speaking"
    await controller.on_transcript("echo of the story", True)
    assert submitted == []
    gate.set()
    assert await task is True


@pytest.mark.anyio("asyncio")
async def test_mute_aborts_speech_and_keeps_microphone_closed(evening_clock) -> None:
    gate = asyncio.Event()
    controller, synth, log, _, _, _ = build(evening_clock, gate=gate)
    await controller.enter_voice_mode()
    task = asyncio.create_task(controller.speak("A long answer"))
    await drain()
    await controller.mute()
    assert await task is False
    assert synth.stops == 1
    assert controller.state == "muted"
    assert log == ["mic_start", "mic_stop", "play_start", "play_stop"]
    assert 0.2 in evening_clock.sleeps

    await controller.unmute()
    assert controller.state == "listening"
    assert log[-1] == "mic_start"


@pytest.mark.anyio("asyncio")
async def test_exit_voice_mode_aborts_speech(evening_clock) -> None:
    gate = asyncio.Event()
    controller, synth, log, _, _, _ = build(evening_clock, gate=gate)
    await controller.enter_voice_mode()
    task = asyncio.create_task(controller.speak("Goodbye for now"))
    await drain()
    await controller.exit_voice_mode()
    assert await task is False
    assert controller.voice_mode is False
    assert controller.state == "idle"
    assert "mic_start" not in log[1:]


@pytest.mark.anyio("asyncio")
async def test_duplicate_speech_is_suppressed(evening_clock) -> None:
    gate = asyncio.Event()
    controller, synth, _, _, _, _ = build(evening_clock, gate=gate)
    await controller.enter_voice_mode()
    first = asyncio.create_task(controller.speak("Same words"))
    await drain()
    assert await controller.speak("Same words") is False
    gate.set()
    assert await first is True
    assert synth.spoken == ["Same words"]


@pytest.mark.anyio("asyncio")
async def test_failed_playback_uses_short_settle(evening_clock) -> None:
    controller, _, log, _, _, _ = build(evening_clock, error=SpeechSynthesisError("no audio"))
    await controller.enter_voice_mode()
    assert await controller.speak("Hello") is False
    assert evening_clock.sleeps[-1] == 0.2
    assert log[-1] == "mic_start"


@pytest.mark.anyio("asyncio")
async def test_permission_denial_requires_explicit_grant(evening_clock) -> None:
    controller, _, log, submitted, _, notices = build(evening_clock)
    await controller.enter_voice_mode()
    await controller.on_recognition_error("not-allowed")
    assert controller.permission_denied is True
    assert notices == [PERMISSION_MESSAGE]

    await controller.on_recognition_end()
    await controller.unmute()
    await drain()
    assert log == ["mic_start"]

    await controller.handle_event({"type": "permission.granted"})
    assert controller.listening is True
    assert log == ["mic_start", "mic_start"]


@pytest.mark.anyio("asyncio")
async def test_no_speech_restarts_after_short_pause(evening_clock) -> None:
    controller, _, log, _, _, _ = build(evening_clock)
    await controller.enter_voice_mode()
    await controller.on_recognition_error("no-speech")
    assert controller.listening is False
    await drain()
    assert evening_clock.sleeps == [1.0]
    assert log == ["mic_start", "mic_start"]
    assert controller.listening is True


@pytest.mark.anyio("asyncio")
async def test_other_errors_retry_once(evening_clock) -> None:
    controller, _, log, _, _, _ = build(evening_clock)
    await controller.enter_voice_mode()
    await controller.on_recognition_error("network")
    await drain()
    assert log == ["mic_start", "mic_start"]

    await controller.on_recognition_error("network")
    await drain()
    assert log == ["mic_start", "mic_start"]
    assert controller.listening is False
    assert evening_clock.sleeps == [2.0]


@pytest.mark.anyio("asyncio")
async def test_aborted_error_is_ignored(evening_clock) -> None:
    controller, _, log, _, _, _ = build(evening_clock)
    await controller.enter_voice_mode()
    await controller.on_recognition_error("aborted")
    await drain()
    assert evening_clock.sleeps == []
    assert log == ["mic_start"]


@pytest.mark.anyio("asyncio")
async def test_unexpected_end_restarts_recognition(evening_clock) -> None:
    controller, _, log, _, _, _ = build(evening_clock)
    await controller.enter_voice_mode()
    await controller.handle_event({"type": "recognition.end"})
    assert log == ["mic_start", "mic_start"]
    assert controller.listening is True


class RecordingChannel:
    def __init__(self, delivered: int = 1) -> None:
        self.delivered = delivered
        self.commands: list[tuple[str, str, dict | None]] = []

    async def send_command(self, user_id: str, command: str, payload: dict | None = None) -> int:
        self.commands.append((user_id, command, payload))
        return self.delivered


@pytest.mark.anyio("asyncio")
async def test_remote_recognition_sends_commands() -> None:
    channel = RecordingChannel(delivered=0)
    source = RemoteRecognitionSource(channel, "u1", language="en-GB")
    await source.start()
    await source.stop()
    assert channel.commands == [
        ("u1", "recognition.start", {"language": "en-GB", "continuous": True, "interim_results": True}),
        ("u1", "recognition.stop", None),
    ]




@pytest.mark.anyio("asyncio")
async def test_final_transcript_returns_before_reply_is_spoken(evening_clock) -> None:
    gate = asyncio.Event()
    controller, synth, log, submitted, _, _ = build(evening_clock, gate=gate)
    await controller.enter_voice_mode()
    await controller.handle_event({"type": "recognition.result", "text": "tell me a story", "is_final": True})
    await controller.handle_event({"type": "recognition.end"})
    await drain()
    assert submitted == ["tell me a story"]
    assert controller.state == "ai_speaking"
    assert log == ["mic_start", "play_start"]

    gate.set()
    await drain()
    assert log == ["mic_start", "play_start", "play_end", "mic_start"]
    assert controller.state == "listening"


@pytest.mark.anyio("asyncio")
async def test_mute_cancels_reply_in_flight(evening_clock) -> None:
    release = asyncio.Event()
    log: list[str] = []

    async def slow_submit(text: str) -> str | None:
        await release.wait()
        return "Too late"

    synth = FakeSynth(log)
    controller = VoiceTurnController(FakeRecognition(log), synth, slow_submit, clock=evening_clock)
    await controller.enter_voice_mode()
    await controller.on_transcript("draw a fox", True)
    await drain()
    assert log == ["mic_start", "mic_stop"]

    await controller.mute()
    release.set()
    await drain()
    assert synth.spoken == []

    await controller.unmute()
    assert controller.state == "listening"
    assert log == ["mic_start", "mic_stop", "mic_start"]


def elevenlabs(seen: list[httpx.Request] | None = None, status: int = 200, api_key: str = "el-key") -> ElevenLabsClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, content=b"ID3-audio")

    client = httpx.AsyncClient(base_url="https://api.elevenlabs.io/v1", transport=httpx.MockTransport(handler))
    return ElevenLabsClient(SpeechSettings(api_key=api_key), client=client)


@pytest.mark.anyio("asyncio")
async def test_elevenlabs_synthesize_sends_voice_settings() -> None:
    seen: list[httpx.Request] = []
    speech = elevenlabs(seen)
    audio = await speech.synthesize("Hello", voice_id="custom", voice_overrides={"stability": 0.9})

    request = seen[0]
    assert audio == b"ID3-audio"
    assert request.url.path == "/v1/text-to-speech/custom"
    assert request.url.params["output_format"] == "pcm_22050"
    assert request.headers["xi-api-key"] == "el-key"
    body = json.loads(request.content)
    assert body["voice_settings"]["stability"] == 0.9
    assert body["voice_settings"]["use_speaker_boost"] is True
    await speech.aclose()


@pytest.mark.anyio("asyncio")
async def test_elevenlabs_errors_are_wrapped() -> None:
    speech = elevenlabs(status=401, api_key="bad")
    with pytest.raises(SpeechSynthesisError, match="HTTP 401"):
        await speech.synthesize("Hello")
    missing = elevenlabs(api_key="")
    with pytest.raises(SpeechSynthesisError, match="not configured"):
        await missing.synthesize("Hello")
    await speech.aclose()
    await missing.aclose()


async def no_reply(text: str) -> str | None:
    return None


def browser_user(clock, speech: ElevenLabsClient, channel: RecordingChannel, user_id: str):
    channel_speech = BrowserSpeechChannel(speech, channel, user_id)
    controller = VoiceTurnController(FakeRecognition([]), channel_speech, no_reply, clock=clock)
    return controller, channel_speech


def sent(channel: RecordingChannel, user_id: str, command: str) -> list[dict]:
    return [payload for uid, name, payload in channel.commands if uid == user_id and name == command]


async def both_speaking(clock):
    seen: list[httpx.Request] = []
    speech = elevenlabs(seen)
    channel = RecordingChannel()
    alice, alice_speech = browser_user(clock, speech, channel, "alice")
    bob, bob_speech = browser_user(clock, speech, channel, "bob")
    await alice.enter_voice_mode()
    await bob.enter_voice_mode()
    alice_task = asyncio.create_task(alice.speak("Hi Alice"))
    bob_task = asyncio.create_task(bob.speak("Hi Bob"))
    await drain(60)
    alice_tag = sent(channel, "alice", "speech.play")[0]["tag"]
    bob_tag = sent(channel, "bob", "speech.play")[0]["tag"]
    await alice_speech.handle_event({"type": "speech.started", "tag": alice_tag})
    await bob_speech.handle_event({"type": "speech.started", "tag": bob_tag})
    await drain()
    return {
        "seen": seen,
        "channel": channel,
        "alice": (alice, alice_speech, alice_task, alice_tag),
        "bob": (bob, bob_speech, bob_task, bob_tag),
    }


@pytest.mark.anyio("asyncio")
async def test_browser_speech_is_sent_to_the_speaking_user(evening_clock) -> None:
    session = await both_speaking(evening_clock)
    channel = session["channel"]
    alice, _, alice_task, alice_tag = session["alice"]
    bob, bob_speech, bob_task, bob_tag = session["bob"]

    payload = sent(channel, "alice", "speech.play")[0]
    assert payload["content_type"] == "audio/mpeg"
    assert base64.b64decode(payload["audio_base64"]) == b"ID3-audio"
    assert session["seen"][0].url.params["output_format"] == "mp3_44100_128"
    assert alice_tag != bob_tag
    assert alice.state == "ai_speaking"
    assert bob.state == "ai_speaking"

    await bob_speech.handle_event({"type": "speech.ended", "tag": bob_tag})
    assert await bob_task is True
    assert bob.state == "listening"
    assert alice.state == "ai_speaking"
    await alice.mute()
    assert await alice_task is False


@pytest.mark.anyio("asyncio")
async def test_muting_one_user_leaves_the_other_speaking(evening_clock) -> None:
    session = await both_speaking(evening_clock)
    channel = session["channel"]
    alice, _, alice_task, alice_tag = session["alice"]
    bob, bob_speech, bob_task, bob_tag = session["bob"]

    await alice.mute()
    assert await alice_task is False
    assert sent(channel, "alice", "speech.stop") == [{"tag": alice_tag}]
    assert sent(channel, "bob", "speech.stop") == []
    assert bob_speech.is_currently_playing() is True
    assert bob.state == "ai_speaking"

    await bob_speech.handle_event({"type": "speech.ended", "tag": bob_tag})
    assert await bob_task is True


@pytest.mark.anyio("asyncio")
async def test_browser_speech_ignores_events_for_other_clips() -> None:
    channel = RecordingChannel()
    speech = BrowserSpeechChannel(elevenlabs(), channel, "u1")
    task = asyncio.create_task(speech.speak_text("Hello"))
    await drain(60)
    tag = sent(channel, "u1", "speech.play")[0]["tag"]

    assert await speech.handle_event({"type": "speech.ended", "tag": "tts:stale"}) is False
    assert speech.is_currently_playing() is False
    await speech.handle_event({"type": "speech.started", "tag": tag})
    assert speech.is_currently_playing() is True
    await speech.handle_event({"type": "speech.error", "tag": tag, "error": "decode failed"})
    with pytest.raises(SpeechSynthesisError, match="decode failed"):
        await task
    assert speech.is_currently_playing() is False


@pytest.mark.anyio("asyncio")
async def test_browser_speech_needs_a_connected_client() -> None:
    speech = BrowserSpeechChannel(elevenlabs(), RecordingChannel(delivered=0), "u1")
    with pytest.raises(SpeechSynthesisError, match="No client"):
        await speech.speak_text("Hello")


class SharedSpeaker:
    def __init__(self) -> None:
        self.current: str | None = None
        self.gate = asyncio.Event()
        self.rates: list[int] = []
        self.stopped: list[str | None] = []

    def is_playing(self, tag: str | None = None) -> bool:
        return self.current is not None and (tag is None or tag == self.current)

    async def play_pcm16(self, audio: bytes, samplerate: int, tag: str, on_start=None) -> float:
        self.current = tag
        self.rates.append(samplerate)
        if on_start is not None:
            await on_start()
        await self.gate.wait()
        if self.current == tag:
            self.current = None
        return len(audio) / 2 / samplerate

    async def stop(self, tag: str | None = None) -> bool:
        self.stopped.append(tag)
        if tag is None or tag == self.current:
            self.current = None
            return True
        return False


@pytest.mark.anyio("asyncio")
async def test_local_speech_only_tracks_its_own_clip() -> None:
    speaker = SharedSpeaker()
    speech = elevenlabs()
    alice = LocalSpeechChannel(speech, speaker)
    bob = LocalSpeechChannel(speech, speaker)
    started: list[bool] = []

    async def on_start() -> None:
        started.append(True)

    task = asyncio.create_task(alice.speak_text("Hi Alice", {"voice_id": "custom"}, on_start=on_start))
    await drain(60)
    assert started == [True]
    assert alice.is_currently_playing() is True
    assert bob.is_currently_playing() is False

    await bob.stop()
    assert speaker.stopped == []
    assert alice.is_currently_playing() is True

    speaker.gate.set()
    await task
    assert speaker.rates == [22_050]
    assert alice.is_currently_playing() is False
    assert await alice.handle_event({"type": "speech.ended"}) is False
