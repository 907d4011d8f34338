from __future__ import annotations

import asyncio
import random

import pytest

from originx import persona
from originx.billing.ledger import CreditLedger
from originx.capabilities.invocation import CapabilityInvoker
from originx.capabilities.registry import (
    BaseCapability,
    Capability,
    CapabilityMetadata,
    CapabilityOutput,
    CapabilityRegistry,
    ImageRequest,
    VideoRequest,
)
from originx.llm.types import ChatProvider, LanguageModelError, LLMReply
from originx.orchestrator.context_store import UserContextStore
from originx.orchestrator.onboarding import OnboardingStateMachine
from originx.orchestrator.policies import FALLBACK_MESSAGE, ConversationPolicy
from originx.orchestrator.state_machine import ConversationOrchestrator
from originx.scenarios.catalog import load_catalog
from originx.scenarios.selector import ScenarioSelector


class StubLLM(ChatProvider):
    name = "stub"

    def __init__(self, reply: str = "Let's paint the sky!", error: Exception | None = None, delay: float = 0.0) -> None:
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []

    def is_ready(self) -> bool:
        return True

    async def generate_response(self, prompt, context) -> LLMReply:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return LLMReply(content=self.reply)

    async def extract_name(self, utterance, subject):
        return None

    async def generate_dynamic_scenario(self, context, capabilities):
        raise LanguageModelError("no scenarios today")


class RecordingBridge:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    async def publish_state(self, user_id: str, state: str, payload: dict | None = None) -> None:
        self.events.append((user_id, state, payload or {}))


class StubMedia(BaseCapability):
    def __init__(self, capability_id: str, kind: str, cost: float) -> None:
        super().__init__(
            Capability(
                id=capability_id,
                name=capability_id,
                type="model",
                capabilities=frozenset({f"{kind}_generation"}),
                metadata=CapabilityMetadata(cost_per_use=cost),
            )
        )
        self.request_model = ImageRequest if kind == "image" else VideoRequest
        self.prompts: list[str] = []

    async def generate_image(self, request: ImageRequest) -> CapabilityOutput:
        self.prompts.append(request.prompt)
        return CapabilityOutput(result={"image_url": "https://cdn.example/a.png"})

    async def generate_video(self, request: VideoRequest) -> CapabilityOutput:
        self.prompts.append(request.prompt)
        return CapabilityOutput(result={"video_url": "https://cdn.example/a.mp4"})


def build(clock, llm=None, adapters=(), ledger=None, rng_seed=9, bridge=None, dynamic=False, with_invoker=True):
    store = UserContextStore(clock=clock)
    selector = ScenarioSelector(load_catalog(), llm=None, rng=random.Random(1))
    onboarding = OnboardingStateMachine(selector, llm=None, dynamic_scenarios=False, clock=clock)
    registry = CapabilityRegistry()
    for adapter in adapters:
        registry.register(adapter)
    invoker = CapabilityInvoker(registry, ledger or CreditLedger(clock=clock), clock=clock)
    orchestrator = ConversationOrchestrator(
        store,
        onboarding,
        selector,
        llm or StubLLM(),
        invoker=invoker if with_invoker else None,
        policy=ConversationPolicy(llm_timeout_s=0.05, dynamic_scenarios=dynamic),
        ui_bridge=bridge,
        clock=clock,
        rng=random.Random(rng_seed),
    )
    return orchestrator, store


async def onboarded(store: UserContextStore, user_id: str = "u1"):
    return await store.update_user_context(user_id, current_step="scenario", name="Sam", one_name="Nova")


@pytest.mark.anyio("asyncio")
async def test_onboarding_turns_advance_the_store(evening_clock) -> None:
    orchestrator, store = build(evening_clock)
    first = await orchestrator.handle_turn("u1", "Nova")
    assert first.next_step == "naming-user"
    assert first.request_id.startswith("req_")
    assert first.error is None

    second = await orchestrator.handle_turn("u1", "call me Sam", client_step="naming-user")
    assert second.resync_step is None
    assert second.next_step == "scenario"

    context = store.get_user_context("u1")
    assert (context.one_name, context.name, context.current_step) == ("Nova", "Sam", "scenario")
    assert [item.step for item in context.recent_interactions] == ["naming-one", "naming-user"]


@pytest.mark.anyio("asyncio")
async def test_stale_client_step_is_resynced(evening_clock) -> None:
    orchestrator, store = build(evening_clock)
    await orchestrator.handle_turn("u1", "Nova")
    response = await orchestrator.handle_turn("u1", "Sam", client_step="naming-one")
    assert response.resync_step == "naming-user"
    assert store.get_user_context("u1").name == "Sam"

    garbage = await orchestrator.handle_turn("u1", "hello again", client_step="not-a-step")
    assert garbage.resync_step == "scenario"


@pytest.mark.anyio("asyncio")
async def test_general_turn_uses_language_model_and_records_mood(evening_clock) -> None:
    llm = StubLLM(reply="How about a moonlit haiku?")
    orchestrator, store = build(evening_clock, llm=llm)
    await onboarded(store)
    response = await orchestrator.handle_turn("u1", "I feel calm tonight")
    assert response.message == "How about a moonlit haiku?"
    assert response.next_step == "scenario"
    assert response.capability_response is None
    assert llm.prompts == ["I feel calm tonight"]
    assert store.get_user_context("u1").emotional_state.mood == "relaxed"


@pytest.mark.anyio("asyncio")
async def test_image_request_attaches_media_within_cost_ceiling(evening_clock) -> None:
    cheap = StubMedia("cheap-image", "image", 0.08)
    pricey = StubMedia("pricey-image", "image", 0.20)
    orchestrator, store = build(evening_clock, adapters=[pricey, cheap])
    await onboarded(store)
    response = await orchestrator.handle_turn("u1", "draw me a dragon over the sea")
    media = response.capability_response
    assert media.type == "image"
    assert media.capability_id == "cheap-image"
    assert media.credits_consumed == 8
    assert media.result == {"image_url": "https://cdn.example/a.png"}
    assert cheap.prompts == ["draw me a dragon over the sea"]
    assert pricey.prompts == []


@pytest.mark.anyio("asyncio")
async def test_media_request_without_invoker_answers_in_text(evening_clock) -> None:
    llm = StubLLM(reply="I would love to, once my easel is set up.")
    orchestrator, store = build(evening_clock, llm=llm, adapters=[StubMedia("image", "image", 0.08)], with_invoker=False)
    await onboarded(store)
    response = await orchestrator.handle_turn("u1", "draw me a dragon over the sea")
    assert response.error is None
    assert response.capability_response is None
    assert response.message == "I would love to, once my easel is set up."


@pytest.mark.anyio("asyncio")
async def test_video_intent_takes_precedence(evening_clock) -> None:
    image = StubMedia("image", "image", 0.08)
    video = StubMedia("video", "video", 0.40)
    orchestrator, store = build(evening_clock, adapters=[image, video])
    await onboarded(store)
    response = await orchestrator.handle_turn("u1", "make a short video of a dragon")
    assert response.capability_response.type == "video"
    assert image.prompts == []


@pytest.mark.anyio("asyncio")
async def test_media_over_ceiling_degrades_to_text(evening_clock) -> None:
    pricey = StubMedia("pricey-image", "image", 0.20)
    orchestrator, store = build(evening_clock, adapters=[pricey])
    await onboarded(store)
    response = await orchestrator.handle_turn("u1", "paint a picture of my cat")
    assert response.capability_response is None
    assert response.message == "Let's paint the sky!"
    assert response.upgrade_required is False
    assert pricey.prompts == []


@pytest.mark.anyio("asyncio")
async def test_insufficient_credits_request_an_upgrade(evening_clock) -> None:
    ledger = CreditLedger(plan_credits={"free": 1}, clock=evening_clock)
    orchestrator, store = build(evening_clock, adapters=[StubMedia("img", "image", 0.08)], ledger=ledger)
    await onboarded(store)
    response = await orchestrator.handle_turn("u1", "generate an image of a forest")
    assert response.capability_response is None
    assert response.upgrade_required is True
    assert response.message.endswith(persona.UPGRADE_HINT)


@pytest.mark.anyio("asyncio")
async def test_language_model_failure_uses_canned_reply(evening_clock) -> None:
    orchestrator, store = build(evening_clock, llm=StubLLM(error=LanguageModelError("503")), rng_seed=4)
    context = await onboarded(store)
    response = await orchestrator.handle_turn("u1", "tell me something")
    assert response.message == persona.fallback_reply("tell me something", context, random.Random(4))
    assert response.error is None


@pytest.mark.anyio("asyncio")
async def test_language_model_timeout_uses_canned_reply(evening_clock) -> None:
    orchestrator, store = build(evening_clock, llm=StubLLM(delay=1.0))
    await onboarded(store)
    response = await orchestrator.handle_turn("u1", "hello")
    assert response.message
    assert response.error is None


@pytest.mark.anyio("asyncio")
async def test_unexpected_failure_returns_fallback_message(evening_clock) -> None:
    orchestrator, store = build(evening_clock, llm=StubLLM(error=RuntimeError("bug")))
    await onboarded(store)
    response = await orchestrator.handle_turn("u1", "hello")
    assert response.message == FALLBACK_MESSAGE
    assert response.error == "RuntimeError"
    assert response.request_id.startswith("req_")
    follow_up = await orchestrator.handle_turn("u1", "still there?")
    assert follow_up.message == FALLBACK_MESSAGE


@pytest.mark.anyio("asyncio")
async def test_concurrent_turns_get_unique_ids_and_are_all_recorded(evening_clock) -> None:
    orchestrator, store = build(evening_clock)
    await onboarded(store)
    responses = await asyncio.gather(*(orchestrator.handle_turn("u1", f"message {index}") for index in range(10)))
    assert len({response.request_id for response in responses}) == 10
    recorded = [item.user_input for item in store.get_user_context("u1").recent_interactions]
    assert sorted(recorded) == sorted(f"message {index}" for index in range(10))


@pytest.mark.anyio("asyncio")
async def test_voice_mode_marks_reply_for_speech_and_publishes_state(evening_clock) -> None:
    bridge = RecordingBridge()
    orchestrator, store = build(evening_clock, bridge=bridge)
    await onboarded(store)
    response = await orchestrator.handle_turn("u1", "hi there", mode="voice")
    assert response.speak is True
    states = [state for _, state, _ in bridge.events]
    assert states == ["COMPOSING", "RESPONDED"]
    assert bridge.events[-1][2]["request_id"] == response.request_id
    text = await orchestrator.handle_turn("u1", "hi there")
    assert text.speak is False


@pytest.mark.anyio("asyncio")
async def test_missing_user_id_uses_default(evening_clock) -> None:
    orchestrator, store = build(evening_clock)
    await orchestrator.handle_turn(None, "Nova")
    assert store.get_user_context("anonymous").one_name == "Nova"


@pytest.mark.anyio("asyncio")
async def test_greeting_for_new_and_returning_users(evening_clock) -> None:
    orchestrator, store = build(evening_clock)
    fresh = await orchestrator.greet("new-user")
    assert fresh.scenario.id == "naming_one_intro"
    assert fresh.message == fresh.scenario.prompt
    assert fresh.next_step == "naming-one"

    await onboarded(store, "sam")
    returning = await orchestrator.greet("sam")
    assert returning.message.startswith("Good evening, Sam! Nova here.")
    assert store.get_user_context("sam").last_scenario == returning.scenario


@pytest.mark.anyio("asyncio")
async def test_quick_positive_reply_updates_preferences(evening_clock) -> None:
    orchestrator, store = build(evening_clock)
    await onboarded(store)
    greeting = await orchestrator.greet("u1")
    evening_clock.advance(5)
    await orchestrator.handle_turn("u1", "yes, I love that idea so much")
    preferences = store.get_user_context("u1").preferences
    assert greeting.scenario.type in preferences.preferred_scenario_types
