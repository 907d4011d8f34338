from __future__ import annotations

from typing import Mapping

import httpx

from originx.config import SpeechSettings
from originx.telemetry.logging import get_logger

PCM_SAMPLE_RATE = 22_050
MP3_FORMAT = "mp3_44100_128"


class SpeechSynthesisError(Exception):
    """ElevenLabs could not produce audio, or the audio could not be played."""


def split_voice_config(voice_config: Mapping[str, float | str] | None) -> tuple[str | None, dict[str, float | str]]:
    """Separate an optional ``voice_id`` from the voice-setting overrides."""
    overrides = dict(voice_config or {})
    voice_id = overrides.pop("voice_id", None)
    return (str(voice_id) if voice_id else None), overrides


class ElevenLabsClient:
    """Text-to-speech over the ElevenLabs HTTP API.

    The client only produces audio bytes and holds no playback state, so one
    instance is shared by every user's speech channel.
    """

    def __init__(self, settings: SpeechSettings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            base_url="https://api.elevenlabs.io/v1",
            timeout=httpx.Timeout(settings.timeout_s, connect=5.0),
        )
        self._logger = get_logger(__name__)

    def is_ready(self) -> bool:
        return bool(self._settings.api_key)

    def _payload(self, text: str, overrides: Mapping[str, float | str] | None) -> dict[str, object]:
        voice_settings: dict[str, float | str] = {
            "stability": self._settings.stability,
            "similarity_boost": self._settings.similarity_boost,
            "style": self._settings.style,
            "use_speaker_boost": True,
        }
        voice_settings.update(overrides or {})
        return {"text": text, "model_id": self._settings.model_id, "voice_settings": voice_settings}

    async def synthesize(
        self,
        text: str,
        voice_id: str | None = None,
        voice_overrides: Mapping[str, float | str] | None = None,
        output_format: str = f"pcm_{PCM_SAMPLE_RATE}",
    ) -> bytes:
        if not self._settings.api_key:
            raise SpeechSynthesisError("ELEVENLABS_API_KEY is not configured")
        voice = voice_id or self._settings.voice_id
        preview = text if len(text) <= 120 else text[:120] + "..."
        self._logger.info("elevenlabs.tts.request", voice=voice, format=output_format, text=preview)
        try:
            async with self._client.stream(
                "POST",
                f"/text-to-speech/{voice}",
                params={"output_format": output_format},
                headers={"xi-api-key": self._settings.api_key, "Accept": "audio/*"},
                json=self._payload(text, voice_overrides),
            ) as resp:
                resp.raise_for_status()
                chunks = [chunk async for chunk in resp.aiter_bytes()]
        except httpx.HTTPStatusError as exc:
            raise SpeechSynthesisError(f"ElevenLabs returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise SpeechSynthesisError(f"ElevenLabs request failed: {exc}") from exc
        audio = b"".join(chunks)
        if not audio:
            raise SpeechSynthesisError("ElevenLabs returned no audio")
        return audio

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "ElevenLabsClient",
    "MP3_FORMAT",
    "PCM_SAMPLE_RATE",
    "SpeechSynthesisError",
    "split_voice_config",
]
