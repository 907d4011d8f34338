from __future__ import annotations

import asyncio
import dataclasses
import random
from typing import Any, Literal

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from originx.billing.ledger import CreditLedger
from originx.capabilities.discovery import discover_capabilities
from originx.capabilities.invocation import CapabilityInvoker
from originx.capabilities.registry import CapabilityRegistry
from originx.config import AppSettings, load_settings
from originx.llm.providers.openai import OpenAIProvider
from originx.orchestrator.clock import Clock
from originx.orchestrator.context_store import UserContextStore
from originx.orchestrator.onboarding import OnboardingStateMachine
from originx.orchestrator.policies import ConversationPolicy, VoiceTimings
from originx.orchestrator.state_machine import ConversationOrchestrator
from originx.scenarios.catalog import load_catalog
from originx.scenarios.selector import ScenarioSelector
from originx.telemetry.logging import configure_logging, get_logger
from originx.telemetry.tracing import configure_tracing
from originx.transcription.base import RemoteRecognitionSource
from originx.tts.elevenlabs import ElevenLabsClient
from originx.tts.playback import SpeechChannel, SpeechChannelFactory, speech_channel_factory
from originx.ui.websocket import FloatingUIBridge
from originx.voice.controller import VoiceTurnController

settings = load_settings()
configure_logging(settings.telemetry.log_level)
configure_tracing("originx-companion", settings.telemetry.otlp_endpoint)
logger = get_logger(__name__)

app = FastAPI(title="OriginX Companion")
ui_bridge = FloatingUIBridge()

origins = {settings.ui.origin}
if "localhost" in settings.ui.origin:
    origins.add(settings.ui.origin.replace("localhost", "127.0.0.1"))
app.include_router(ui_bridge.router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.on_event("startup")
async def startup_event() -> None:
    app.state.runtime = await bootstrap_runtime(settings)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.shutdown()


class Runtime:
    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        selector: ScenarioSelector,
        registry: CapabilityRegistry,
        invoker: CapabilityInvoker,
        ledger: CreditLedger,
        speech_factory: SpeechChannelFactory,
        bridge: FloatingUIBridge,
        timings: VoiceTimings | None = None,
        closeables: list[Any] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._selector = selector
        self._registry = registry
        self._invoker = invoker
        self._ledger = ledger
        self._speech_factory = speech_factory
        self._bridge = bridge
        self._timings = timings or VoiceTimings()
        self._closeables = list(closeables or [])
        self._voice: dict[str, VoiceTurnController] = {}
        self._speech: dict[str, SpeechChannel] = {}
        self._logger = get_logger(__name__)

    @property
    def orchestrator(self) -> ConversationOrchestrator:
        return self._orchestrator

    @property
    def selector(self) -> ScenarioSelector:
        return self._selector

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def ledger(self) -> CreditLedger:
        return self._ledger

    async def start(self) -> None:
        self._bridge.set_message_handler(self.handle_socket_message)
        self._bridge.set_disconnect_handler(self.handle_socket_closed)
        self._logger.info("runtime.started", capabilities=self._registry.statistics())

    async def shutdown(self) -> None:
        self._logger.info("runtime.shutdown.start")
        self._bridge.set_message_handler(None)
        self._bridge.set_disconnect_handler(None)
        await asyncio.gather(*(controller.close() for controller in self._voice.values()), return_exceptions=True)
        self._voice.clear()
        self._speech.clear()
        await self._registry.aclose()
        for resource in self._closeables:
            await resource.aclose()
        self._logger.info("runtime.shutdown.complete")

    def voice_controller(self, user_id: str) -> VoiceTurnController:
        controller = self._voice.get(user_id)
        if controller is None:

            async def submit(text: str) -> str | None:
                response = await self._orchestrator.handle_turn(user_id, text, mode="voice")
                return response.message if response.speak else None

            async def on_state(state: str, detail: dict[str, Any]) -> None:
                await self._bridge.publish_state(user_id, "VOICE", {**detail, "state": state})

            async def notify(message: str) -> None:
                await self._bridge.publish_state(user_id, "NOTICE", {"message": message, "blocking": True})

            speech = self._speech_factory(user_id)
            controller = VoiceTurnController(
                RemoteRecognitionSource(self._bridge, user_id),
                speech,
                submit,
                timings=self._timings,
                on_state_change=on_state,
                notify=notify,
            )
            self._speech[user_id] = speech
            self._voice[user_id] = controller
        return controller

    async def voice_action(self, user_id: str, action: str) -> dict[str, Any]:
        controller = self.voice_controller(user_id)
        if action == "enter":
            await controller.enter_voice_mode()
        elif action == "exit":
            await controller.exit_voice_mode()
        elif action == "mute":
            await controller.mute()
        elif action == "unmute":
            await controller.unmute()
        else:
            raise ValueError(f"Unknown voice action '{action}'")
        return controller.snapshot()

    def has_voice_session(self, user_id: str) -> bool:
        return user_id in self._voice

    async def handle_socket_message(self, user_id: str, message: dict[str, Any]) -> None:
        kind = str(message.get("type", ""))
        controller = self._voice.get(user_id)
        if controller is None:
            self._logger.debug("ui.message.no_voice_session", user_id=user_id, type=kind)
            return
        if kind.startswith("speech."):
            await self._speech[user_id].handle_event(message)
            return
        await controller.handle_event(message)

    async def handle_socket_closed(self, user_id: str) -> None:
        """Drop the voice session once the user's last socket has gone."""
        controller = self._voice.pop(user_id, None)
        self._speech.pop(user_id, None)
        if controller is None:
            return
        await controller.close()
        self._logger.info("voice.session.closed", user_id=user_id)


async def bootstrap_runtime(app_settings: AppSettings) -> Runtime:
    conversation = app_settings.conversation
    clock = Clock(conversation.timezone)
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(app_settings.media.timeout_s, connect=5.0))

    llm_settings = app_settings.llm
    llm = OpenAIProvider(
        llm_settings.api_key,
        base_url=llm_settings.base_url,
        chat_model=llm_settings.chat_model,
        scenario_model=llm_settings.scenario_model,
        timeout_s=llm_settings.timeout_s,
    )
    speech = ElevenLabsClient(app_settings.speech)

    registry = CapabilityRegistry()
    discover_capabilities(app_settings, registry, llm, speech, http_client=http_client)
    billing = app_settings.billing
    ledger = CreditLedger(
        credits_per_usd=billing.credits_per_usd,
        plan_credits=billing.plan_credits,
        default_plan=billing.default_plan,
        clock=clock,
    )
    invoker = CapabilityInvoker(registry, ledger, default_timeout_s=app_settings.media.timeout_s, clock=clock)

    rng = random.Random()
    selector = ScenarioSelector(load_catalog(), llm=llm, rng=rng, timeout_s=llm_settings.timeout_s)
    policy = ConversationPolicy.from_settings(conversation, app_settings.media, llm_settings.timeout_s)
    onboarding = OnboardingStateMachine(
        selector,
        llm=llm,
        capabilities=lambda: registry.descriptors(active_only=True),
        dynamic_scenarios=policy.dynamic_scenarios,
        name_timeout_s=llm_settings.timeout_s,
        clock=clock,
    )
    store = UserContextStore(
        clock=clock,
        initial_step=conversation.initial_step,
        max_interactions=policy.max_recent_interactions,
    )
    orchestrator = ConversationOrchestrator(
        store,
        onboarding,
        selector,
        llm,
        invoker=invoker,
        policy=policy,
        ui_bridge=ui_bridge,
        clock=clock,
        rng=rng,
    )

    runtime = Runtime(
        orchestrator,
        selector,
        registry,
        invoker,
        ledger,
        speech_channel_factory(app_settings.speech, speech, ui_bridge),
        ui_bridge,
        timings=VoiceTimings.from_settings(app_settings.voice),
        closeables=[llm, speech, http_client],
    )
    await runtime.start()
    logger.info("runtime.bootstrapped", environment=app_settings.ENVIRONMENT)
    return runtime


def _runtime() -> Runtime:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Runtime not ready")
    return runtime


class ChatRequest(BaseModel):
    user_id: str | None = None
    text: str = Field(min_length=1)
    step: str | None = None
    mode: Literal["text", "voice"] = "text"


class SessionInitRequest(BaseModel):
    user_id: str | None = None
    step: str | None = None
    mode: Literal["text", "voice"] = "text"


@app.post("/chat")
async def chat_endpoint(request: ChatRequest) -> dict[str, Any]:
    runtime = _runtime()
    response = await runtime.orchestrator.handle_turn(request.user_id, request.text, request.step, request.mode)
    return response.to_dict()


@app.post("/session/init")
async def session_init(request: SessionInitRequest) -> dict[str, Any]:
    runtime = _runtime()
    response = await runtime.orchestrator.greet(request.user_id, request.step, request.mode)
    return response.to_dict()


@app.get("/users/{user_id}/context")
async def user_context(user_id: str) -> dict[str, Any]:
    context = _runtime().orchestrator.store.get_user_context(user_id)
    if context is None:
        raise HTTPException(status_code=404, detail=f"Unknown user '{user_id}'")
    return context.to_dict()


@app.get("/capabilities")
async def list_capabilities() -> dict[str, Any]:
    registry = _runtime().registry
    return {
        "capabilities": [item.model_dump(mode="json") for item in registry.descriptors()],
        "statistics": registry.statistics(),
    }


@app.get("/scenarios/suggestions/{user_id}")
async def scenario_suggestions(user_id: str, limit: int = 3) -> dict[str, Any]:
    runtime = _runtime()
    context = await runtime.orchestrator.store.get_or_create(user_id)
    suggestions = runtime.selector.suggest(context, limit)
    return {"user_id": user_id, "scenarios": [item.model_dump(mode="json") for item in suggestions]}


@app.get("/billing/{user_id}")
async def billing_summary(user_id: str) -> dict[str, Any]:
    ledger = _runtime().ledger
    return {
        "summary": ledger.usage_summary(user_id),
        "usage": [dataclasses.asdict(record) for record in ledger.usage(user_id)],
    }


@app.post("/voice/{user_id}/{action}")
async def voice_action(user_id: str, action: Literal["enter", "exit", "mute", "unmute"]) -> dict[str, Any]:
    return await _runtime().voice_action(user_id, action)


__all__ = ["Runtime", "app", "bootstrap_runtime"]
