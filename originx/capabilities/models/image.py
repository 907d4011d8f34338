from __future__ import annotations

import httpx

from originx.capabilities.registry import (
    IMAGE_GENERATION,
    BaseCapability,
    Capability,
    CapabilityError,
    CapabilityMetadata,
    CapabilityOutput,
    ImageRequest,
)
from originx.telemetry.logging import get_logger

_FLUX_SIZES = {
    "1024x1024": "square_hd",
    "1792x1024": "landscape_16_9",
    "1024x1792": "portrait_16_9",
}


class DallE3Model(BaseCapability):
    request_model = ImageRequest

    def __init__(self, descriptor: Capability, api_key: str | None, client: httpx.AsyncClient) -> None:
        super().__init__(descriptor)
        self._api_key = api_key
        self._client = client
        self._logger = get_logger(__name__)

    def estimate_cost(self, request: ImageRequest) -> float:
        base = self.descriptor.metadata.cost_per_use
        if request.quality == "hd":
            base += 0.04
        if request.size != "1024x1024":
            base += 0.04
        return round(base, 4)

    async def generate_image(self, request: ImageRequest) -> CapabilityOutput:
        if not self._api_key:
            raise CapabilityError("OPENAI_API_KEY is not configured")
        try:
            resp = await self._client.post(
                "https://api.openai.com/v1/images/generations",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "model": "dall-e-3",
                    "prompt": request.prompt,
                    "size": request.size,
                    "quality": request.quality,
                    "style": request.style,
                    "n": 1,
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("capability.dalle.failed", error=str(exc))
            raise CapabilityError(f"DALL-E request failed: {exc}") from exc
        images = data.get("data") or []
        if not images or not images[0].get("url"):
            raise CapabilityError("DALL-E returned no image")
        first = images[0]
        return CapabilityOutput(
            result={
                "image_url": first["url"],
                "revised_prompt": first.get("revised_prompt"),
                "size": request.size,
                "model": "dall-e-3",
            },
            cost=self.estimate_cost(request),
        )


class FluxProModel(BaseCapability):
    request_model = ImageRequest

    def __init__(self, descriptor: Capability, endpoint: str, api_key: str | None, client: httpx.AsyncClient) -> None:
        super().__init__(descriptor)
        self._endpoint = endpoint
        self._api_key = api_key
        self._client = client
        self._logger = get_logger(__name__)

    async def generate_image(self, request: ImageRequest) -> CapabilityOutput:
        if not self._api_key:
            raise CapabilityError("FAL_API_KEY is not configured")
        try:
            resp = await self._client.post(
                f"https://fal.run/{self._endpoint}",
                headers={"Authorization": f"Key {self._api_key}"},
                json={
                    "prompt": request.prompt,
                    "image_size": _FLUX_SIZES.get(request.size, "square_hd"),
                    "num_images": 1,
                    "safety_tolerance": "2",
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("capability.flux.failed", endpoint=self._endpoint, error=str(exc))
            raise CapabilityError(f"Flux request failed: {exc}") from exc
        images = data.get("images") or []
        if not images or not images[0].get("url"):
            raise CapabilityError("Flux returned no image")
        return CapabilityOutput(
            result={
                "image_url": images[0]["url"],
                "size": request.size,
                "model": self._endpoint,
                "seed": data.get("seed"),
            }
        )


def image_models(openai_key: str | None, fal_key: str | None, client: httpx.AsyncClient) -> list[BaseCapability]:
    return [
        DallE3Model(
            Capability(
                id="dalle-3",
                name="DALL-E 3",
                type="model",
                description="High-quality image generation from text descriptions",
                provider="openai",
                capabilities=frozenset({IMAGE_GENERATION}),
                metadata=CapabilityMetadata(
                    cost_per_use=0.08,
                    average_latency_ms=15000,
                    quality_score=0.90,
                    supported_formats=("png",),
                    limitations=("1 image per request",),
                ),
                status="active" if openai_key else "inactive",
            ),
            openai_key,
            client,
        ),
        FluxProModel(
            Capability(
                id="fal-ai-flux-pro-v1.1",
                name="FLUX1.1 [pro]",
                type="model",
                description="Fast, detailed text-to-image generation",
                provider="fal",
                version="1.1",
                capabilities=frozenset({IMAGE_GENERATION}),
                metadata=CapabilityMetadata(
                    cost_per_use=0.10,
                    average_latency_ms=5000,
                    quality_score=0.92,
                    supported_formats=("jpeg", "png"),
                ),
                status="active" if fal_key else "inactive",
            ),
            "fal-ai/flux-pro/v1.1",
            fal_key,
            client,
        ),
        FluxProModel(
            Capability(
                id="fal-ai-flux-pro-v1.0",
                name="FLUX.1 [pro]",
                type="model",
                description="Previous-generation Flux text-to-image model",
                provider="fal",
                version="1.0",
                capabilities=frozenset({IMAGE_GENERATION}),
                metadata=CapabilityMetadata(cost_per_use=0.08, average_latency_ms=6000, quality_score=0.85),
                status="inactive",
            ),
            "fal-ai/flux-pro",
            fal_key,
            client,
        ),
    ]


__all__ = ["DallE3Model", "FluxProModel", "image_models"]
