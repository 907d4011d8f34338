from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

from originx.scenarios.catalog import Scenario

ConversationStep = Literal["landing", "naming-one", "naming-user", "scenario", "completed"]
TimeOfDay = Literal["morning", "afternoon", "evening", "night"]
Mood = Literal["excited", "curious", "relaxed", "focused", "creative", "playful"]
Level = Literal["low", "medium", "high"]
CommunicationStyle = Literal["casual", "formal", "playful", "professional"]
CreativityLevel = Literal["conservative", "balanced", "experimental"]
VoiceState = Literal["idle", "listening", "ai_speaking", "muted"]
TurnMode = Literal["text", "voice"]

ONBOARDING_STEPS: tuple[ConversationStep, ...] = ("landing", "naming-one", "naming-user")
STEP_ORDER: dict[str, int] = {"landing": 0, "naming-one": 1, "naming-user": 2, "scenario": 3, "completed": 3}


def normalize_step(step: str) -> ConversationStep:
    """``completed`` is an alias of the steady ``scenario`` step."""
    if step == "completed":
        return "scenario"
    if step not in STEP_ORDER:
        raise ValueError(f"Unknown conversation step '{step}'")
    return step  # type: ignore[return-value]


@dataclass(slots=True, frozen=True)
class TimeContext:
    time_of_day: TimeOfDay
    day_of_week: str
    timezone: str

    @classmethod
    def from_datetime(cls, moment: datetime) -> "TimeContext":
        hour = moment.hour
        if hour < 12:
            time_of_day: TimeOfDay = "morning"
        elif hour < 17:
            time_of_day = "afternoon"
        elif hour < 21:
            time_of_day = "evening"
        else:
            time_of_day = "night"
        tz = moment.tzname() or "UTC"
        return cls(time_of_day=time_of_day, day_of_week=moment.strftime("%A"), timezone=tz)


@dataclass(slots=True, frozen=True)
class EmotionalState:
    mood: Mood = "curious"
    energy: Level = "medium"
    creativity: Level = "medium"


@dataclass(slots=True, frozen=True)
class Preferences:
    communication_style: CommunicationStyle = "casual"
    creativity_level: CreativityLevel = "balanced"
    preferred_scenario_types: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class Interaction:
    ts: datetime
    user_input: str
    response: str
    step: ConversationStep
    scenario_id: str | None = None


@dataclass(slots=True, frozen=True)
class UserContext:
    user_id: str
    session_id: str
    time_context: TimeContext
    current_step: ConversationStep = "naming-one"
    name: str | None = None
    one_name: str | None = None
    emotional_state: EmotionalState | None = None
    preferences: Preferences = field(default_factory=Preferences)
    recent_interactions: tuple[Interaction, ...] = ()
    last_scenario: Scenario | None = None
    last_proposed_at: datetime | None = None

    @property
    def is_onboarding(self) -> bool:
        return self.current_step in ONBOARDING_STEPS

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_scenario"] = self.last_scenario.model_dump(mode="json") if self.last_scenario else None
        return data


@dataclass(slots=True)
class CapabilityResponse:
    type: Literal["image", "video"]
    capability_id: str
    result: dict[str, Any]
    cost: float
    credits_consumed: int = 0


@dataclass(slots=True)
class EngineResponse:
    message: str
    request_id: str = ""
    scenario: Scenario | None = None
    next_step: ConversationStep | None = None
    capability_response: CapabilityResponse | None = None
    thinking_process: str | None = None
    speak: bool = False
    resync_step: ConversationStep | None = None
    upgrade_required: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "request_id": self.request_id,
            "scenario": self.scenario.model_dump(mode="json") if self.scenario else None,
            "next_step": self.next_step,
            "capability_response": asdict(self.capability_response) if self.capability_response else None,
            "thinking_process": self.thinking_process,
            "speak": self.speak,
            "resync_step": self.resync_step,
            "upgrade_required": self.upgrade_required,
            "error": self.error,
        }


__all__ = [
    "CapabilityResponse",
    "CommunicationStyle",
    "ConversationStep",
    "CreativityLevel",
    "EmotionalState",
    "EngineResponse",
    "Interaction",
    "Level",
    "Mood",
    "ONBOARDING_STEPS",
    "Preferences",
    "STEP_ORDER",
    "TimeContext",
    "TimeOfDay",
    "TurnMode",
    "UserContext",
    "VoiceState",
    "normalize_step",
]
