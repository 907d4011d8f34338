from __future__ import annotations

from originx.orchestrator.events import EmotionalState, Level, Mood, Preferences
from originx.scenarios.catalog import Scenario

_MOOD_KEYWORDS: tuple[tuple[Mood, tuple[str, ...]], ...] = (
    ("excited", ("excited", "amazing", "awesome")),
    ("creative", ("creative", "imagine", "create")),
    ("relaxed", ("relaxed", "calm", "peaceful")),
    ("focused", ("focused", "work", "serious")),
    ("playful", ("fun", "play", "silly")),
)
_ENERGY_KEYWORDS: tuple[tuple[Level, tuple[str, ...]], ...] = (
    ("low", ("tired", "sleepy", "low")),
    ("high", ("energetic", "pumped", "high")),
)
_CREATIVITY_KEYWORDS: tuple[tuple[Level, tuple[str, ...]], ...] = (
    ("high", ("creative", "artistic", "innovative")),
    ("low", ("simple", "basic", "easy")),
)
_POSITIVE_WORDS = ("yes", "love", "great", "awesome")
QUICK_RESPONSE_S = 30.0


def _first_match(text: str, table, default):
    for value, words in table:
        if any(word in text for word in words):
            return value
    return default


def analyze_emotional_state(text: str) -> EmotionalState:
    lowered = text.lower()
    return EmotionalState(
        mood=_first_match(lowered, _MOOD_KEYWORDS, "curious"),
        energy=_first_match(lowered, _ENERGY_KEYWORDS, "medium"),
        creativity=_first_match(lowered, _CREATIVITY_KEYWORDS, "medium"),
    )


def update_preferences_from_interaction(
    preferences: Preferences,
    scenario: Scenario,
    user_response: str,
    response_time_s: float,
) -> Preferences:
    """Learn from a quick, positive reply to a proposed scenario."""
    lowered = user_response.lower()
    positive = len(user_response) > 10 and any(word in lowered for word in _POSITIVE_WORDS)
    if not positive or response_time_s >= QUICK_RESPONSE_S:
        return preferences

    preferred = preferences.preferred_scenario_types
    if scenario.type not in preferred:
        preferred = (*preferred, scenario.type)
    creativity = preferences.creativity_level
    if scenario.difficulty == "advanced":
        creativity = "experimental"
    elif scenario.difficulty == "intermediate" and creativity == "conservative":
        creativity = "balanced"
    return Preferences(
        communication_style=preferences.communication_style,
        creativity_level=creativity,
        preferred_scenario_types=preferred,
    )


__all__ = ["analyze_emotional_state", "update_preferences_from_interaction"]
