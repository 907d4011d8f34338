from __future__ import annotations

import dataclasses
from typing import Awaitable, Callable, Sequence

from originx import persona
from originx.capabilities.registry import Capability
from originx.llm.types import ChatProvider
from originx.orchestrator.clock import CLOCK, Clock
from originx.orchestrator.events import EngineResponse, UserContext
from originx.orchestrator.names import extract_name
from originx.scenarios.catalog import Scenario
from originx.scenarios.selector import ScenarioSelector
from originx.telemetry.logging import get_logger

Converse = Callable[[str, UserContext], Awaitable[EngineResponse]]
CapabilitySource = Callable[[], Sequence[Capability]]


class OnboardingStateMachine:
    """Scripted first contact: name the companion, name the user, then hand over to free conversation.

    ``handle`` returns the reply together with the revised context; the caller
    persists it. ``scenario`` is a steady state that forwards every turn to the
    general conversation path.
    """

    def __init__(
        self,
        selector: ScenarioSelector,
        llm: ChatProvider | None = None,
        capabilities: CapabilitySource | None = None,
        dynamic_scenarios: bool = True,
        name_timeout_s: float = 10.0,
        clock: Clock = CLOCK,
    ) -> None:
        self._selector = selector
        self._llm = llm
        self._capabilities = capabilities
        self._dynamic = dynamic_scenarios
        self._name_timeout_s = name_timeout_s
        self._clock = clock
        self._logger = get_logger(__name__)

    async def handle(
        self,
        user_input: str,
        context: UserContext,
        converse: Converse | None = None,
    ) -> tuple[EngineResponse, UserContext]:
        step = context.current_step
        if step == "landing":
            return self._from_landing(context)
        if step == "naming-one":
            return await self._from_naming_one(user_input, context)
        if step == "naming-user":
            return await self._from_naming_user(user_input, context)
        if step in ("scenario", "completed"):
            if converse is not None:
                return await converse(user_input, context), context
            return EngineResponse(message=persona.fallback_reply(user_input, context)), context
        self._logger.warning("onboarding.step.unknown", step=step, user_id=context.user_id)
        return EngineResponse(message=persona.fallback_reply(user_input, context)), context

    def _from_landing(self, context: UserContext) -> tuple[EngineResponse, UserContext]:
        revised = dataclasses.replace(context, current_step="naming-one")
        scenario = self._selector.onboarding_scenario("naming-one", revised)
        return (
            EngineResponse(message=scenario.prompt, scenario=scenario, next_step="naming-one"),
            self._with_scenario(revised, scenario),
        )

    async def _from_naming_one(self, user_input: str, context: UserContext) -> tuple[EngineResponse, UserContext]:
        one_name = await extract_name(user_input, "persona", self._llm, self._name_timeout_s)
        revised = dataclasses.replace(context, one_name=one_name, current_step="naming-user")
        scenario = self._selector.onboarding_scenario("naming-user", revised)
        self._logger.info("onboarding.persona_named", user_id=context.user_id, one_name=one_name)
        return (
            EngineResponse(
                message=f"{persona.naming_one_ack(one_name)} {scenario.prompt}",
                scenario=scenario,
                next_step="naming-user",
            ),
            self._with_scenario(revised, scenario),
        )

    async def _from_naming_user(self, user_input: str, context: UserContext) -> tuple[EngineResponse, UserContext]:
        name = await extract_name(user_input, "user", self._llm, self._name_timeout_s)
        revised = dataclasses.replace(context, name=name, current_step="scenario")
        scenario = await self.first_scenario(revised)
        self._logger.info("onboarding.completed", user_id=context.user_id, name=name, scenario_id=scenario.id)
        return (
            EngineResponse(
                message=f"{persona.naming_user_ack(name)} {scenario.prompt}",
                scenario=scenario,
                next_step="scenario",
            ),
            self._with_scenario(revised, scenario),
        )

    async def first_scenario(self, context: UserContext) -> Scenario:
        capabilities = list(self._capabilities()) if self._capabilities else []
        if self._dynamic and capabilities:
            return await self._selector.generate_dynamic_scenario(context, capabilities)
        return self._selector.onboarding_scenario("scenario", context)

    def _with_scenario(self, context: UserContext, scenario: Scenario) -> UserContext:
        return dataclasses.replace(context, last_scenario=scenario, last_proposed_at=self._clock.now())


__all__ = ["CapabilitySource", "Converse", "OnboardingStateMachine"]
