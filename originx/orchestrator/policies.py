from __future__ import annotations

from dataclasses import dataclass, field

from originx.config import ConversationSettings, MediaSettings, VoiceSettings

IMAGE_KEYWORDS: tuple[str, ...] = (
    "image",
    "picture",
    "photo",
    "visual",
    "artwork",
    "illustration",
    "draw",
    "paint",
    "create",
    "generate",
    "make",
)
VIDEO_KEYWORDS: tuple[str, ...] = ("video", "animation", "motion", "movie", "clip", "animate", "moving")

FALLBACK_MESSAGE = "I'm sorry, I encountered an issue processing your request. Could you try again?"


@dataclass(slots=True)
class VoiceTimings:
    """Durations in seconds used by the voice turn controller."""

    punctuation_timeout_s: float = 0.8
    short_timeout_s: float = 2.0
    default_timeout_s: float = 1.5
    settle_s: float = 0.5
    failure_settle_s: float = 0.2
    no_speech_retry_s: float = 1.0
    error_retry_s: float = 2.0

    @classmethod
    def from_settings(cls, settings: VoiceSettings) -> "VoiceTimings":
        return cls(
            punctuation_timeout_s=settings.punctuation_timeout_ms / 1000,
            short_timeout_s=settings.short_timeout_ms / 1000,
            default_timeout_s=settings.default_timeout_ms / 1000,
            settle_s=settings.settle_ms / 1000,
            failure_settle_s=settings.failure_settle_ms / 1000,
            no_speech_retry_s=settings.no_speech_retry_ms / 1000,
            error_retry_s=settings.error_retry_ms / 1000,
        )


@dataclass
class MediaPolicy:
    image_max_cost: float = 0.15
    video_max_cost: float = 0.50
    image_keywords: tuple[str, ...] = IMAGE_KEYWORDS
    video_keywords: tuple[str, ...] = VIDEO_KEYWORDS
    quality_level: str = "balanced"

    @classmethod
    def from_settings(cls, settings: MediaSettings) -> "MediaPolicy":
        return cls(image_max_cost=settings.image_max_cost_usd, video_max_cost=settings.video_max_cost_usd)

    def detect(self, text: str) -> str | None:
        """Return ``video`` or ``image`` when the utterance asks for media; video wins."""
        lowered = text.lower()
        if any(word in lowered for word in self.video_keywords):
            return "video"
        if any(word in lowered for word in self.image_keywords):
            return "image"
        return None

    def max_cost(self, kind: str) -> float:
        return self.video_max_cost if kind == "video" else self.image_max_cost


@dataclass
class ConversationPolicy:
    max_recent_interactions: int = 50
    dynamic_scenarios: bool = True
    default_user_id: str = "anonymous"
    llm_timeout_s: float = 20.0
    media_timeout_s: float = 90.0
    media: MediaPolicy = field(default_factory=MediaPolicy)

    @classmethod
    def from_settings(
        cls,
        conversation: ConversationSettings,
        media: MediaSettings,
        llm_timeout_s: float = 20.0,
    ) -> "ConversationPolicy":
        return cls(
            max_recent_interactions=conversation.max_recent_interactions,
            dynamic_scenarios=conversation.dynamic_scenarios,
            default_user_id=conversation.default_user_id,
            llm_timeout_s=llm_timeout_s,
            media_timeout_s=media.timeout_s,
            media=MediaPolicy.from_settings(media),
        )


__all__ = [
    "ConversationPolicy",
    "FALLBACK_MESSAGE",
    "IMAGE_KEYWORDS",
    "MediaPolicy",
    "VIDEO_KEYWORDS",
    "VoiceTimings",
]
