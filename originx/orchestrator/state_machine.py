from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Protocol
from uuid import uuid4

from pydantic import ValidationError
from structlog.contextvars import bound_contextvars

from originx import persona
from originx.capabilities.invocation import CapabilityInvoker, InvocationOptions
from originx.llm.types import ChatProvider, LanguageModelError, LLMReply
from originx.orchestrator.clock import CLOCK, Clock
from originx.orchestrator.context_store import ContextTransaction, UserContextStore
from originx.orchestrator.events import (
    CapabilityResponse,
    ConversationStep,
    EngineResponse,
    Interaction,
    TurnMode,
    UserContext,
    normalize_step,
)
from originx.orchestrator.onboarding import OnboardingStateMachine
from originx.orchestrator.policies import FALLBACK_MESSAGE, ConversationPolicy
from originx.scenarios.catalog import Scenario
from originx.scenarios.emotion import analyze_emotional_state, update_preferences_from_interaction
from originx.scenarios.selector import ScenarioSelector
from originx.telemetry.logging import get_logger
from originx.telemetry.tracing import get_tracer


class UIStatePublisher(Protocol):
    async def publish_state(self, user_id: str, state: str, payload: dict | None = None) -> None: ...


def new_request_id() -> str:
    return f"req_{uuid4().hex}"


class ConversationOrchestrator:
    """Single entry point turning one user utterance into one :class:`EngineResponse`."""

    def __init__(
        self,
        store: UserContextStore,
        onboarding: OnboardingStateMachine,
        selector: ScenarioSelector,
        llm: ChatProvider,
        invoker: CapabilityInvoker | None = None,
        policy: ConversationPolicy | None = None,
        ui_bridge: UIStatePublisher | None = None,
        clock: Clock = CLOCK,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._onboarding = onboarding
        self._selector = selector
        self._llm = llm
        self._invoker = invoker
        self._policy = policy or ConversationPolicy()
        self._ui = ui_bridge
        self._clock = clock
        self._rng = rng or random.Random()
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)

    @property
    def store(self) -> UserContextStore:
        return self._store

    async def handle_turn(
        self,
        user_id: str | None,
        text: str,
        client_step: str | None = None,
        mode: TurnMode = "text",
    ) -> EngineResponse:
        uid = user_id or self._policy.default_user_id
        return await self._guarded(uid, mode, "turn", lambda request_id: self._run_turn(uid, text.strip(), client_step))

    async def greet(self, user_id: str | None, client_step: str | None = None, mode: TurnMode = "text") -> EngineResponse:
        uid = user_id or self._policy.default_user_id
        return await self._guarded(uid, mode, "greeting", lambda request_id: self._run_greeting(uid, client_step))

    async def respond(self, text: str, context: UserContext) -> EngineResponse:
        """General conversation: language model first, then optional media generation."""
        thinking: list[str] = []
        try:
            reply = await asyncio.wait_for(
                self._llm.generate_response(text, context),
                timeout=self._policy.llm_timeout_s,
            )
        except (LanguageModelError, asyncio.TimeoutError) as exc:
            self._logger.warning("conversation.llm.degraded", error=str(exc) or type(exc).__name__)
            thinking.append(f"language model unavailable ({type(exc).__name__}); using canned reply")
            reply = LLMReply(content="")
        else:
            thinking.append("language model answered" if reply.content else "language model returned no answer")

        message = reply.content or persona.fallback_reply(text, context, self._rng)
        response = EngineResponse(
            message=message,
            scenario=self._scenario_from_reply(reply),
            next_step=context.current_step,
        )

        kind = self._policy.media.detect(text)
        if kind is not None and self._invoker is not None:
            await self._attach_media(self._invoker, kind, text, context, response, thinking)
        response.thinking_process = "\n".join(thinking)
        return response

    async def _guarded(
        self,
        user_id: str,
        mode: TurnMode,
        kind: str,
        run: Callable[[str], Awaitable[EngineResponse]],
    ) -> EngineResponse:
        request_id = new_request_id()
        with bound_contextvars(request_id=request_id, user_id=user_id), self._tracer.start_as_current_span(
            f"conversation.{kind}"
        ) as span:
            span.set_attribute("originx.user_id", user_id)
            span.set_attribute("originx.request_id", request_id)
            await self._publish(user_id, "COMPOSING", {"request_id": request_id, "mode": mode})
            try:
                response = await run(request_id)
            except Exception as exc:
                self._logger.exception("conversation.turn.failed", kind=kind)
                span.record_exception(exc)
                response = EngineResponse(message=FALLBACK_MESSAGE, error=type(exc).__name__)
            response.request_id = request_id
            response.speak = mode == "voice" and bool(response.message)
            await self._publish(user_id, "RESPONDED", response.to_dict())
            self._logger.info(
                "conversation.turn.complete",
                kind=kind,
                step=response.next_step,
                resync=response.resync_step,
                media=response.capability_response.type if response.capability_response else None,
            )
        return response

    async def _run_turn(self, user_id: str, text: str, client_step: str | None) -> EngineResponse:
        async with self._store.transaction(user_id) as txn:
            resync = self._resolve_step(txn.context, client_step)
            step_before = txn.context.current_step
            if txn.context.is_onboarding:
                response, revised = await self._onboarding.handle(text, txn.context, converse=self.respond)
                txn.commit(revised)
            else:
                self._learn(txn, text)
                response = await self.respond(text, txn.context)
                if response.scenario is not None:
                    txn.update(last_scenario=response.scenario, last_proposed_at=self._clock.now())
            txn.record_interaction(
                Interaction(
                    ts=self._clock.now(),
                    user_input=text,
                    response=response.message,
                    step=step_before,
                    scenario_id=response.scenario.id if response.scenario else None,
                )
            )
            response.next_step = txn.context.current_step
            response.resync_step = resync
            trace_line = f"step {step_before} -> {txn.context.current_step}"
            response.thinking_process = "\n".join(filter(None, [trace_line, response.thinking_process]))
        return response

    async def _run_greeting(self, user_id: str, client_step: str | None) -> EngineResponse:
        async with self._store.transaction(user_id) as txn:
            context = txn.context
            resync = self._resolve_step(context, client_step)
            if context.is_onboarding:
                scenario = self._selector.propose_scenario(context)
                message = scenario.prompt
            else:
                scenario = await self._proposal(context)
                message = f"{persona.greeting(context)} {scenario.prompt}"
            txn.update(last_scenario=scenario, last_proposed_at=self._clock.now())
        return EngineResponse(
            message=message,
            scenario=scenario,
            next_step=context.current_step,
            resync_step=resync,
            thinking_process=f"greeting for step {context.current_step}",
        )

    async def _proposal(self, context: UserContext) -> Scenario:
        if self._policy.dynamic_scenarios and self._invoker is not None:
            capabilities = self._invoker.registry.descriptors(active_only=True)
            return await self._selector.generate_dynamic_scenario(context, capabilities)
        return self._selector.select_general(context)

    def _resolve_step(self, context: UserContext, client_step: str | None) -> ConversationStep | None:
        """Return the store's step when the caller's view disagrees, so the caller can resync."""
        if client_step is None:
            return None
        try:
            believed = normalize_step(client_step)
        except ValueError:
            believed = None
        if believed == context.current_step:
            return None
        self._logger.info("conversation.step.resync", client_step=client_step, store_step=context.current_step)
        return context.current_step

    def _learn(self, txn: ContextTransaction, text: str) -> None:
        context = txn.context
        changes: dict[str, Any] = {"emotional_state": analyze_emotional_state(text)}
        if context.last_scenario is not None and context.last_proposed_at is not None:
            elapsed = (self._clock.now() - context.last_proposed_at).total_seconds()
            learned = update_preferences_from_interaction(context.preferences, context.last_scenario, text, elapsed)
            if learned != context.preferences:
                changes["preferences"] = learned
        txn.update(**changes)

    async def _attach_media(
        self,
        invoker: CapabilityInvoker,
        kind: str,
        text: str,
        context: UserContext,
        response: EngineResponse,
        thinking: list[str],
    ) -> None:
        media = self._policy.media
        options = InvocationOptions(
            user_id=context.user_id,
            max_cost=media.max_cost(kind),
            quality_level=media.quality_level,
            timeout_s=self._policy.media_timeout_s,
        )
        await self._publish(context.user_id, "GENERATING", {"kind": kind})
        if kind == "video":
            result = await invoker.generate_video(text, options)
        else:
            result = await invoker.generate_image(text, options)

        if result.success:
            response.capability_response = CapabilityResponse(
                type="video" if kind == "video" else "image",
                capability_id=result.metadata.capability_id,
                result=result.result or {},
                cost=result.cost,
                credits_consumed=result.metadata.credits_consumed,
            )
            thinking.append(f"{kind} generated by {result.metadata.capability_id} for ${result.cost:.2f}")
            return
        if result.insufficient_credits:
            response.upgrade_required = True
            response.message = f"{response.message} {persona.UPGRADE_HINT}"
        self._logger.info("conversation.media.degraded", kind=kind, error=result.error, code=result.error_code)
        thinking.append(f"{kind} generation skipped: {result.error}")

    def _scenario_from_reply(self, reply: LLMReply) -> Scenario | None:
        if not reply.scenario:
            return None
        raw = {"id": f"llm_{uuid4().hex[:9]}", "type": "dynamic", **reply.scenario}
        try:
            return Scenario.model_validate(raw)
        except ValidationError:
            self._logger.info("conversation.llm.scenario_discarded")
            return None

    async def _publish(self, user_id: str, state: str, payload: dict[str, Any]) -> None:
        if self._ui is None:
            return
        try:
            await self._ui.publish_state(user_id, state, payload)
        except Exception as exc:  # pragma: no cover - UI delivery is best effort
            self._logger.warning("conversation.ui.publish_failed", state=state, error=str(exc))


__all__ = ["ConversationOrchestrator", "UIStatePublisher", "new_request_id"]
