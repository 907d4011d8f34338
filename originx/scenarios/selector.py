from __future__ import annotations

import asyncio
import random
import time
from typing import Sequence
from uuid import uuid4

from originx.capabilities.registry import Capability
from originx.llm.types import ChatProvider
from originx.orchestrator.events import ONBOARDING_STEPS, UserContext
from originx.scenarios.catalog import Difficulty, Scenario, ScenarioCatalog
from originx.telemetry.logging import get_logger

# tags that count as matching a communication style when scoring
STYLE_SCORE_TAGS: dict[str, frozenset[str]] = {
    "casual": frozenset({"casual", "friendly", "relaxed"}),
    "playful": frozenset({"playful", "fun", "whimsical"}),
    "professional": frozenset({"professional", "focused", "structured"}),
    "formal": frozenset({"formal", "structured", "serious"}),
}
# narrower tag sets used as soft filters when picking onboarding prompts
STYLE_FILTER_TAGS: dict[str, frozenset[str]] = {
    "casual": frozenset({"casual", "friendly"}),
    "playful": frozenset({"playful", "fun"}),
    "professional": frozenset({"professional", "focused"}),
    "formal": frozenset({"formal", "structured"}),
}
CREATIVITY_SCORE_FIT: dict[str, frozenset[str]] = {
    "conservative": frozenset({"beginner"}),
    "balanced": frozenset({"beginner", "intermediate"}),
    "experimental": frozenset({"advanced"}),
}
CREATIVITY_FILTER_FIT: dict[str, frozenset[str]] = {
    "conservative": frozenset({"beginner"}),
    "balanced": frozenset({"beginner", "intermediate"}),
    "experimental": frozenset({"beginner", "intermediate", "advanced"}),
}
_GENERATED_DIFFICULTY: dict[str, Difficulty] = {
    "conservative": "beginner",
    "balanced": "intermediate",
    "experimental": "advanced",
}


def score_relevance(scenario: Scenario, context: UserContext) -> int:
    """Additive relevance of ``scenario`` for ``context``; pure and deterministic."""
    score = 1
    if scenario.has_tag(context.time_context.time_of_day):
        score += 2
    if scenario.has_tag("universal"):
        score += 1
    if context.emotional_state is not None and scenario.has_tag(context.emotional_state.mood):
        score += 3
    prefs = context.preferences
    if scenario.type in prefs.preferred_scenario_types:
        score += 2
    if scenario.difficulty in CREATIVITY_SCORE_FIT.get(prefs.creativity_level, frozenset()):
        score += 2
    if scenario.tags & STYLE_SCORE_TAGS.get(prefs.communication_style, frozenset()):
        score += 2
    return score


def rank_scenarios(scenarios: Sequence[Scenario], context: UserContext) -> list[Scenario]:
    return sorted(scenarios, key=lambda item: score_relevance(item, context), reverse=True)


def _narrow(candidates: list[Scenario], keep) -> list[Scenario]:
    narrowed = [item for item in candidates if keep(item)]
    return narrowed or candidates


def select_scenario_by_context(
    scenarios: Sequence[Scenario],
    context: UserContext,
    rng: random.Random | None = None,
) -> Scenario:
    """Apply style, creativity, time and mood as successive soft filters, then choose at random."""
    if not scenarios:
        raise ValueError("No scenarios available")
    candidates = list(scenarios)
    if len(candidates) == 1:
        return candidates[0]
    prefs = context.preferences
    style_tags = STYLE_FILTER_TAGS.get(prefs.communication_style, frozenset())
    candidates = _narrow(candidates, lambda item: bool(item.tags & style_tags))
    fit = CREATIVITY_FILTER_FIT.get(prefs.creativity_level, frozenset())
    candidates = _narrow(candidates, lambda item: item.difficulty in fit)
    time_of_day = context.time_context.time_of_day
    candidates = _narrow(candidates, lambda item: item.has_tag(time_of_day) or item.has_tag("universal"))
    if context.emotional_state is not None:
        mood = context.emotional_state.mood
        candidates = _narrow(candidates, lambda item: item.has_tag(mood))
    return (rng or random).choice(candidates)


class ScenarioSelector:
    def __init__(
        self,
        catalog: ScenarioCatalog,
        llm: ChatProvider | None = None,
        rng: random.Random | None = None,
        timeout_s: float = 20.0,
    ) -> None:
        self._catalog = catalog
        self._llm = llm
        self._rng = rng or random.Random()
        self._timeout_s = timeout_s
        self._logger = get_logger(__name__)

    @property
    def catalog(self) -> ScenarioCatalog:
        return self._catalog

    def propose_scenario(self, context: UserContext) -> Scenario:
        if context.current_step in ONBOARDING_STEPS:
            return self.onboarding_scenario(context.current_step, context)
        return self.select_general(context)

    def onboarding_scenario(self, step: str, context: UserContext) -> Scenario:
        options = self._catalog.onboarding(step)
        if not options:
            return self.select_general(context)
        return select_scenario_by_context(options, context, self._rng)

    def select_general(self, context: UserContext) -> Scenario:
        wanted = {context.time_context.time_of_day, "universal"}
        if context.emotional_state is not None:
            wanted.add(context.emotional_state.mood)
        matches = [item for item in self._catalog.general if item.tags & wanted]
        if not matches:
            return self._catalog.first()
        return self._rng.choice(matches)

    def suggest(self, context: UserContext, limit: int = 3) -> list[Scenario]:
        return rank_scenarios(self._catalog.general, context)[: max(limit, 0)]

    async def generate_dynamic_scenario(
        self,
        context: UserContext,
        capabilities: Sequence[Capability],
    ) -> Scenario:
        """Ask the language model for a tailored scenario; any failure falls back to the catalog."""
        if self._llm is None or not self._llm.is_ready():
            self._logger.info("scenario.dynamic.skipped", reason="llm_unavailable")
            return self.select_general(context)
        offered = list(capabilities)[:5]
        try:
            generated = await asyncio.wait_for(
                self._llm.generate_dynamic_scenario(context, offered),
                timeout=self._timeout_s,
            )
            scenario = Scenario(
                id=f"scenario_{int(time.time() * 1000)}_{uuid4().hex[:9]}",
                type="dynamic",
                title=generated.title,
                description=generated.description,
                prompt=generated.prompt,
                difficulty=_GENERATED_DIFFICULTY.get(context.preferences.creativity_level, "intermediate"),
                estimated_time=5,
                tags=frozenset(generated.tags) | {context.time_context.time_of_day, "ai-generated"},
                capabilities=tuple(sorted({name for cap in offered for name in cap.capabilities})),
            )
        except Exception as exc:
            self._logger.warning("scenario.dynamic.fallback", error=str(exc), error_type=type(exc).__name__)
            return self.select_general(context)
        self._logger.info("scenario.dynamic.generated", scenario_id=scenario.id, title=scenario.title)
        return scenario


__all__ = [
    "ScenarioSelector",
    "rank_scenarios",
    "score_relevance",
    "select_scenario_by_context",
]
