from __future__ import annotations

import httpx

from originx.capabilities.registry import (
    VIDEO_GENERATION,
    BaseCapability,
    Capability,
    CapabilityError,
    CapabilityMetadata,
    CapabilityOutput,
    VideoRequest,
)
from originx.telemetry.logging import get_logger


class FalVideoModel(BaseCapability):
    request_model = VideoRequest

    def __init__(self, descriptor: Capability, endpoint: str, api_key: str | None, client: httpx.AsyncClient) -> None:
        super().__init__(descriptor)
        self._endpoint = endpoint
        self._api_key = api_key
        self._client = client
        self._logger = get_logger(__name__)

    def estimate_cost(self, request: VideoRequest) -> float:
        # priced per 5 second clip
        clips = max(1, -(-request.duration_s // 5))
        return round(self.descriptor.metadata.cost_per_use * clips, 4)

    async def generate_video(self, request: VideoRequest) -> CapabilityOutput:
        if not self._api_key:
            raise CapabilityError("FAL_API_KEY is not configured")
        try:
            resp = await self._client.post(
                f"https://fal.run/{self._endpoint}",
                headers={"Authorization": f"Key {self._api_key}"},
                json={
                    "prompt": request.prompt,
                    "duration": str(request.duration_s),
                    "aspect_ratio": request.aspect_ratio,
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("capability.video.failed", endpoint=self._endpoint, error=str(exc))
            raise CapabilityError(f"Video request failed: {exc}") from exc
        video = data.get("video") or {}
        if not video.get("url"):
            raise CapabilityError("Video model returned no clip")
        return CapabilityOutput(
            result={
                "video_url": video["url"],
                "duration_s": request.duration_s,
                "aspect_ratio": request.aspect_ratio,
                "model": self._endpoint,
            },
            cost=self.estimate_cost(request),
        )


def video_models(endpoint: str, fal_key: str | None, client: httpx.AsyncClient) -> list[BaseCapability]:
    return [
        FalVideoModel(
            Capability(
                id="fal-video",
                name="Text-to-video",
                type="model",
                description="Short text-to-video clips",
                provider="fal",
                capabilities=frozenset({VIDEO_GENERATION}),
                metadata=CapabilityMetadata(
                    cost_per_use=0.40,
                    average_latency_ms=45000,
                    quality_score=0.82,
                    supported_formats=("mp4",),
                    limitations=("5-10 second clips",),
                ),
                status="active" if fal_key else "inactive",
            ),
            endpoint,
            fal_key,
            client,
        )
    ]


__all__ = ["FalVideoModel", "video_models"]
