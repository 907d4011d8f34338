from __future__ import annotations

import base64

from originx.capabilities.registry import (
    VOICE_SYNTHESIS,
    BaseCapability,
    Capability,
    CapabilityError,
    CapabilityMetadata,
    CapabilityOutput,
    VoiceRequest,
)
from originx.tts.elevenlabs import MP3_FORMAT, ElevenLabsClient, SpeechSynthesisError


class ElevenLabsVoiceModel(BaseCapability):
    request_model = VoiceRequest

    def __init__(self, descriptor: Capability, client: ElevenLabsClient) -> None:
        super().__init__(descriptor)
        self._client = client

    async def synthesize_voice(self, request: VoiceRequest) -> CapabilityOutput:
        try:
            audio = await self._client.synthesize(request.text, voice_id=request.voice_id, output_format=MP3_FORMAT)
        except SpeechSynthesisError as exc:
            raise CapabilityError(str(exc)) from exc
        return CapabilityOutput(
            result={
                "audio_base64": base64.b64encode(audio).decode("ascii"),
                "content_type": "audio/mpeg",
                "characters": len(request.text),
            }
        )


class ClientSpeechModel(BaseCapability):
    """Speech rendered by the client's own synthesizer; nothing is generated server-side."""

    request_model = VoiceRequest

    async def synthesize_voice(self, request: VoiceRequest) -> CapabilityOutput:
        return CapabilityOutput(result={"text": request.text, "engine": "client"}, cost=0.0)


def voice_models(client: ElevenLabsClient) -> list[BaseCapability]:
    return [
        ElevenLabsVoiceModel(
            Capability(
                id="elevenlabs-voice",
                name="ElevenLabs Voice",
                type="model",
                description="Natural multilingual speech synthesis",
                provider="elevenlabs",
                capabilities=frozenset({VOICE_SYNTHESIS}),
                metadata=CapabilityMetadata(
                    cost_per_use=0.02,
                    average_latency_ms=3000,
                    quality_score=0.92,
                    supported_formats=("mp3", "pcm"),
                ),
                status="active" if client.is_ready() else "inactive",
            ),
            client,
        ),
        ClientSpeechModel(
            Capability(
                id="client-speech",
                name="Client speech",
                type="model",
                description="Speech synthesis performed by the user's browser",
                provider="client",
                capabilities=frozenset({VOICE_SYNTHESIS}),
                metadata=CapabilityMetadata(cost_per_use=0.0, average_latency_ms=1000, quality_score=0.6),
            )
        ),
    ]


__all__ = ["ClientSpeechModel", "ElevenLabsVoiceModel", "voice_models"]
