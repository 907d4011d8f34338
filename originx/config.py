from __future__ import annotations

import functools
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ConversationStepSetting = Literal["landing", "naming-one"]
SpeechPlayback = Literal["browser", "local"]


class LLMSettings(BaseModel):
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    chat_model: str = "gpt-4o-mini"
    scenario_model: str = "gpt-4o"
    timeout_s: float = 20.0


class SpeechSettings(BaseModel):
    api_key: str | None = None
    voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    model_id: str = "eleven_multilingual_v2"
    stability: float = 0.4
    similarity_boost: float = 0.8
    style: float = 0.2
    timeout_s: float = 30.0
    playback: SpeechPlayback = "browser"
    playback_timeout_s: float = 120.0


class MediaSettings(BaseModel):
    fal_api_key: str | None = None
    fal_video_model: str = "fal-ai/kling-video/v1/standard/text-to-video"
    timeout_s: float = 90.0
    image_max_cost_usd: float = 0.15
    video_max_cost_usd: float = 0.50


class BillingSettings(BaseModel):
    credits_per_usd: int = 100
    default_plan: str = "free"
    plan_credits: dict[str, int] = Field(
        default_factory=lambda: {"free": 6_000, "basic": 500_000, "pro": 1_000_000}
    )


class VoiceSettings(BaseModel):
    punctuation_timeout_ms: int = 800
    short_timeout_ms: int = 2000
    default_timeout_ms: int = 1500
    settle_ms: int = 500
    failure_settle_ms: int = 200
    no_speech_retry_ms: int = 1000
    error_retry_ms: int = 2000


class ConversationSettings(BaseModel):
    initial_step: ConversationStepSetting = "naming-one"
    max_recent_interactions: int = 50
    dynamic_scenarios: bool = True
    default_user_id: str = "anonymous"
    timezone: str | None = None


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    otlp_endpoint: str | None = None


class UISettings(BaseModel):
    origin: str = "http://localhost:3000"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_CHAT_MODEL: str = "gpt-4o-mini"
    OPENAI_SCENARIO_MODEL: str = "gpt-4o"
    LLM_TIMEOUT_SECONDS: float = 20.0
    ELEVENLABS_API_KEY: str | None = None
    ELEVENLABS_VOICE_ID: str = "21m00Tcm4TlvDq8ikWAM"
    ELEVENLABS_MODEL_ID: str = "eleven_multilingual_v2"
    TTS_TIMEOUT_SECONDS: float = 30.0
    SPEECH_PLAYBACK: SpeechPlayback = "browser"
    SPEECH_PLAYBACK_TIMEOUT_SECONDS: float = 120.0
    FAL_API_KEY: str | None = None
    FAL_VIDEO_MODEL: str = "fal-ai/kling-video/v1/standard/text-to-video"
    MEDIA_TIMEOUT_SECONDS: float = 90.0
    IMAGE_MAX_COST_USD: float = 0.15
    VIDEO_MAX_COST_USD: float = 0.50
    CREDITS_PER_USD: int = 100
    DEFAULT_PLAN: str = "free"
    VOICE_PUNCTUATION_TIMEOUT_MS: int = 800
    VOICE_SHORT_TIMEOUT_MS: int = 2000
    VOICE_DEFAULT_TIMEOUT_MS: int = 1500
    VOICE_SETTLE_MS: int = 500
    VOICE_FAILURE_SETTLE_MS: int = 200
    VOICE_NO_SPEECH_RETRY_MS: int = 1000
    VOICE_ERROR_RETRY_MS: int = 2000
    INITIAL_STEP: ConversationStepSetting = "naming-one"
    MAX_RECENT_INTERACTIONS: int = 50
    DYNAMIC_SCENARIOS: bool = True
    DEFAULT_USER_ID: str = "anonymous"
    TIMEZONE: str | None = None
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    UI_ORIGIN: str = "http://localhost:3000"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    @property
    def llm(self) -> LLMSettings:
        return LLMSettings(
            api_key=self.OPENAI_API_KEY or None,
            base_url=self.OPENAI_BASE_URL,
            chat_model=self.OPENAI_CHAT_MODEL,
            scenario_model=self.OPENAI_SCENARIO_MODEL,
            timeout_s=self.LLM_TIMEOUT_SECONDS,
        )

    @property
    def speech(self) -> SpeechSettings:
        return SpeechSettings(
            api_key=self.ELEVENLABS_API_KEY or None,
            voice_id=self.ELEVENLABS_VOICE_ID,
            model_id=self.ELEVENLABS_MODEL_ID,
            timeout_s=self.TTS_TIMEOUT_SECONDS,
            playback=self.SPEECH_PLAYBACK,
            playback_timeout_s=self.SPEECH_PLAYBACK_TIMEOUT_SECONDS,
        )

    @property
    def media(self) -> MediaSettings:
        return MediaSettings(
            fal_api_key=self.FAL_API_KEY or None,
            fal_video_model=self.FAL_VIDEO_MODEL,
            timeout_s=self.MEDIA_TIMEOUT_SECONDS,
            image_max_cost_usd=self.IMAGE_MAX_COST_USD,
            video_max_cost_usd=self.VIDEO_MAX_COST_USD,
        )

    @property
    def billing(self) -> BillingSettings:
        return BillingSettings(credits_per_usd=self.CREDITS_PER_USD, default_plan=self.DEFAULT_PLAN)

    @property
    def voice(self) -> VoiceSettings:
        return VoiceSettings(
            punctuation_timeout_ms=self.VOICE_PUNCTUATION_TIMEOUT_MS,
            short_timeout_ms=self.VOICE_SHORT_TIMEOUT_MS,
            default_timeout_ms=self.VOICE_DEFAULT_TIMEOUT_MS,
            settle_ms=self.VOICE_SETTLE_MS,
            failure_settle_ms=self.VOICE_FAILURE_SETTLE_MS,
            no_speech_retry_ms=self.VOICE_NO_SPEECH_RETRY_MS,
            error_retry_ms=self.VOICE_ERROR_RETRY_MS,
        )

    @property
    def conversation(self) -> ConversationSettings:
        return ConversationSettings(
            initial_step=self.INITIAL_STEP,
            max_recent_interactions=self.MAX_RECENT_INTERACTIONS,
            dynamic_scenarios=self.DYNAMIC_SCENARIOS,
            default_user_id=self.DEFAULT_USER_ID,
            timezone=self.TIMEZONE or None,
        )

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(log_level=self.LOG_LEVEL, otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT)

    @property
    def ui(self) -> UISettings:
        return UISettings(origin=self.UI_ORIGIN)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


__all__ = [
    "AppSettings",
    "BillingSettings",
    "ConversationSettings",
    "LLMSettings",
    "MediaSettings",
    "SpeechSettings",
    "VoiceSettings",
    "load_settings",
]
