from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from originx.telemetry.logging import get_logger

CapabilityType = Literal["model", "agent", "tool", "effect"]
CapabilityStatus = Literal["active", "inactive", "maintenance"]

TEXT_GENERATION = "text_generation"
IMAGE_GENERATION = "image_generation"
VIDEO_GENERATION = "video_generation"
VOICE_SYNTHESIS = "voice_synthesis"


class CapabilityError(Exception):
    """Raised by adapters when a vendor call cannot be completed."""


class CapabilityMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    cost_per_use: float = Field(default=0.0, ge=0.0, description="USD per invocation")
    average_latency_ms: int = Field(default=1000, ge=0)
    quality_score: float = Field(default=0.8, ge=0.0, le=1.0)
    supported_formats: tuple[str, ...] = ()
    limitations: tuple[str, ...] = ()


class Capability(BaseModel):
    """Descriptor for one invocable generative function."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    type: CapabilityType
    description: str = ""
    version: str = "1.0.0"
    provider: str = ""
    capabilities: frozenset[str]
    metadata: CapabilityMetadata = Field(default_factory=CapabilityMetadata)
    status: CapabilityStatus = "active"


@dataclass(slots=True)
class CapabilityOutput:
    result: dict[str, Any]
    cost: float | None = None
    tokens_used: int | None = None


class TextRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=8000)
    max_tokens: int = Field(default=500, ge=1, le=4000)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class ImageRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=4000)
    size: str = "1024x1024"
    quality: Literal["standard", "hd"] = "standard"
    style: Literal["vivid", "natural"] = "vivid"


class VideoRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=2000)
    duration_s: int = Field(default=5, ge=1, le=10)
    aspect_ratio: str = "16:9"


class VoiceRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)
    voice_id: str | None = None


class BaseCapability:
    """Vendor adapter behind the uniform invocation contract.

    Model adapters implement the method named after the capability string they
    declare (``generate_text``, ``generate_image``, ...). Agents implement
    ``execute_task``, tools ``execute`` and effects ``apply``.
    """

    request_model: ClassVar[type[BaseModel]] = TextRequest

    def __init__(self, descriptor: Capability) -> None:
        self.descriptor = descriptor

    @property
    def id(self) -> str:
        return self.descriptor.id

    def estimate_cost(self, request: BaseModel) -> float:
        return self.descriptor.metadata.cost_per_use

    async def generate_text(self, request: TextRequest) -> CapabilityOutput:
        raise CapabilityError(f"{self.id} does not generate text")

    async def generate_image(self, request: ImageRequest) -> CapabilityOutput:
        raise CapabilityError(f"{self.id} does not generate images")

    async def generate_video(self, request: VideoRequest) -> CapabilityOutput:
        raise CapabilityError(f"{self.id} does not generate video")

    async def synthesize_voice(self, request: VoiceRequest) -> CapabilityOutput:
        raise CapabilityError(f"{self.id} does not synthesize voice")

    async def execute_task(self, request: BaseModel) -> CapabilityOutput:
        raise CapabilityError(f"{self.id} is not an agent")

    async def execute(self, request: BaseModel) -> CapabilityOutput:
        raise CapabilityError(f"{self.id} is not a tool")

    async def apply(self, request: BaseModel) -> CapabilityOutput:
        raise CapabilityError(f"{self.id} is not an effect")

    async def aclose(self) -> None:
        return None


class CapabilityRegistry:
    def __init__(self) -> None:
        self._entries: dict[str, BaseCapability] = {}
        self._logger = get_logger(__name__)

    def register(self, capability: BaseCapability) -> bool:
        """Register an adapter; a second registration for the same id is skipped."""
        capability_id = capability.id
        if capability_id in self._entries:
            self._logger.warning("capability.registry.duplicate_skipped", capability=capability_id)
            return False
        self._entries[capability_id] = capability
        self._logger.info(
            "capability.registry.registered",
            capability=capability_id,
            type=capability.descriptor.type,
            status=capability.descriptor.status,
        )
        return True

    def get(self, capability_id: str) -> BaseCapability | None:
        return self._entries.get(capability_id)

    def available(self) -> list[str]:
        return sorted(self._entries)

    def descriptors(self, *, active_only: bool = False) -> list[Capability]:
        items = [entry.descriptor for entry in self._entries.values()]
        if active_only:
            items = [item for item in items if item.status == "active"]
        return items

    def by_capability(self, capability: str, *, active_only: bool = True) -> list[Capability]:
        return [item for item in self.descriptors(active_only=active_only) if capability in item.capabilities]

    def set_status(self, capability_id: str, status: CapabilityStatus) -> Capability:
        entry = self._entries.get(capability_id)
        if entry is None:
            raise KeyError(capability_id)
        entry.descriptor = entry.descriptor.model_copy(update={"status": status})
        self._logger.info("capability.registry.status", capability=capability_id, status=status)
        return entry.descriptor

    def statistics(self) -> dict[str, Any]:
        descriptors = self.descriptors()
        inventory: Counter[str] = Counter()
        for item in descriptors:
            inventory.update(item.capabilities)
        return {
            "total": len(descriptors),
            "by_type": dict(Counter(item.type for item in descriptors)),
            "by_status": dict(Counter(item.status for item in descriptors)),
            "capabilities": dict(sorted(inventory.items())),
        }

    async def aclose(self) -> None:
        for entry in self._entries.values():
            await entry.aclose()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "BaseCapability",
    "Capability",
    "CapabilityError",
    "CapabilityMetadata",
    "CapabilityOutput",
    "CapabilityRegistry",
    "CapabilityStatus",
    "CapabilityType",
    "IMAGE_GENERATION",
    "ImageRequest",
    "TEXT_GENERATION",
    "TextRequest",
    "VIDEO_GENERATION",
    "VideoRequest",
    "VOICE_SYNTHESIS",
    "VoiceRequest",
]
