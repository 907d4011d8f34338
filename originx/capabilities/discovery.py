from __future__ import annotations

from typing import Callable, Iterable

import httpx
from pydantic import ValidationError

from originx.capabilities.models.image import image_models
from originx.capabilities.models.text import openai_text_models
from originx.capabilities.models.video import video_models
from originx.capabilities.models.voice import voice_models
from originx.capabilities.registry import BaseCapability, CapabilityRegistry
from originx.config import AppSettings
from originx.llm.types import ChatProvider
from originx.telemetry.logging import get_logger
from originx.tts.elevenlabs import ElevenLabsClient

CapabilityFactory = Callable[[], Iterable[BaseCapability]]

LOGGER = get_logger(__name__)


def register_discovered(registry: CapabilityRegistry, factories: Iterable[tuple[str, CapabilityFactory]]) -> int:
    """Run every factory, registering what it yields; a failing factory is logged and skipped."""
    registered = 0
    for name, factory in factories:
        try:
            adapters = list(factory())
        except (ValidationError, ValueError, TypeError) as exc:
            LOGGER.warning("capability.discovery.factory_failed", factory=name, error=str(exc))
            continue
        for adapter in adapters:
            if registry.register(adapter):
                registered += 1
    LOGGER.info("capability.discovery.complete", registered=registered, total=len(registry))
    return registered


def discover_capabilities(
    settings: AppSettings,
    registry: CapabilityRegistry,
    llm: ChatProvider,
    speech: ElevenLabsClient,
    http_client: httpx.AsyncClient | None = None,
) -> int:
    media_client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(settings.media.timeout_s, connect=5.0))
    media = settings.media
    factories: list[tuple[str, CapabilityFactory]] = [
        ("text", lambda: openai_text_models(llm)),
        ("image", lambda: image_models(settings.llm.api_key, media.fal_api_key, media_client)),
        ("video", lambda: video_models(media.fal_video_model, media.fal_api_key, media_client)),
        ("voice", lambda: voice_models(speech)),
    ]
    return register_discovered(registry, factories)


__all__ = ["CapabilityFactory", "discover_capabilities", "register_discovered"]
