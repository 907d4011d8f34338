from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Literal, Mapping

from pydantic import BaseModel, Field, ValidationError

from originx.billing.ledger import INSUFFICIENT_CREDITS, CreditLedger
from originx.capabilities.registry import (
    IMAGE_GENERATION,
    TEXT_GENERATION,
    VIDEO_GENERATION,
    VOICE_SYNTHESIS,
    BaseCapability,
    Capability,
    CapabilityError,
    CapabilityOutput,
    CapabilityRegistry,
)
from originx.capabilities.selection import QualityLevel, select_best
from originx.orchestrator.clock import CLOCK, Clock
from originx.telemetry.logging import get_logger

ErrorCode = Literal[
    "not_found",
    "inactive",
    "invalid_input",
    "cost_exceeded",
    "insufficient_credits",
    "no_capability",
    "timeout",
    "vendor_error",
]

_MODEL_METHODS: dict[str, str] = {
    TEXT_GENERATION: "generate_text",
    IMAGE_GENERATION: "generate_image",
    VIDEO_GENERATION: "generate_video",
    VOICE_SYNTHESIS: "synthesize_voice",
}
_TYPE_METHODS: dict[str, str] = {"agent": "execute_task", "tool": "execute", "effect": "apply"}


class InvocationOptions(BaseModel):
    user_id: str | None = None
    max_cost: float | None = Field(default=None, ge=0.0)
    quality_level: QualityLevel = "balanced"
    preferred_provider: str | None = None
    timeout_s: float | None = Field(default=None, gt=0.0)


class InvocationMetadata(BaseModel):
    capability: str
    capability_id: str
    execution_time_ms: float = 0.0
    credits_consumed: int = 0
    tokens_used: int | None = None


class InvocationResult(BaseModel):
    success: bool
    result: dict[str, Any] | None = None
    cost: float = 0.0
    metadata: InvocationMetadata
    error: str | None = None
    error_code: ErrorCode | None = None

    @property
    def insufficient_credits(self) -> bool:
        return self.error_code == "insufficient_credits"


def _failure(
    capability_id: str,
    capability: str,
    code: ErrorCode,
    message: str,
    *,
    cost: float = 0.0,
    elapsed_ms: float = 0.0,
) -> InvocationResult:
    return InvocationResult(
        success=False,
        cost=cost,
        error=message,
        error_code=code,
        metadata=InvocationMetadata(capability=capability, capability_id=capability_id, execution_time_ms=elapsed_ms),
    )


class CapabilityInvoker:
    """Uniform ``invoke`` over registered adapters; never raises to callers."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        ledger: CreditLedger | None = None,
        default_timeout_s: float = 90.0,
        clock: Clock = CLOCK,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._default_timeout_s = default_timeout_s
        self._clock = clock
        self._logger = get_logger(__name__)

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    async def invoke(
        self,
        capability_id: str,
        payload: Mapping[str, Any] | str,
        options: InvocationOptions | None = None,
        *,
        capability: str | None = None,
    ) -> InvocationResult:
        try:
            return await self._invoke(capability_id, payload, options or InvocationOptions(), capability)
        except Exception as exc:  # pragma: no cover - last-resort guard for adapter bugs
            self._logger.exception("capability.invoke.crashed", capability=capability_id)
            return _failure(capability_id, capability or "unknown", "vendor_error", f"Invocation failed: {exc}")

    async def _invoke(
        self,
        capability_id: str,
        payload: Mapping[str, Any] | str,
        options: InvocationOptions,
        capability: str | None,
    ) -> InvocationResult:
        entry = self._registry.get(capability_id)
        if entry is None:
            return _failure(capability_id, capability or "unknown", "not_found", f"Capability '{capability_id}' not found")
        descriptor = entry.descriptor
        label = capability or _primary_capability(descriptor)
        if descriptor.status != "active":
            return _failure(capability_id, label, "inactive", f"Capability '{capability_id}' is {descriptor.status}")

        try:
            request = entry.request_model.model_validate(_normalise_payload(entry, payload))
        except ValidationError as exc:
            return _failure(capability_id, label, "invalid_input", f"Invalid input for '{capability_id}': {exc}")

        estimated = entry.estimate_cost(request)
        if options.max_cost is not None and estimated > options.max_cost:
            self._logger.info(
                "capability.invoke.cost_exceeded",
                capability=capability_id,
                estimated=estimated,
                max_cost=options.max_cost,
            )
            return _failure(
                capability_id,
                label,
                "cost_exceeded",
                f"Estimated cost ({estimated:.2f}) exceeds maximum ({options.max_cost:.2f})",
                cost=estimated,
            )
        if options.user_id and estimated > 0 and self._ledger and not self._ledger.can_afford(options.user_id, estimated):
            return _failure(capability_id, label, "insufficient_credits", INSUFFICIENT_CREDITS, cost=estimated)

        method = _resolve_method(entry, label)
        if method is None:
            return _failure(capability_id, label, "no_capability", f"'{capability_id}' cannot perform {label}")

        timeout = options.timeout_s or self._default_timeout_s
        started = self._clock.monotonic()
        try:
            output: CapabilityOutput = await asyncio.wait_for(method(request), timeout=timeout)
        except asyncio.TimeoutError:
            elapsed = (self._clock.monotonic() - started) * 1000
            self._logger.warning("capability.invoke.timeout", capability=capability_id, timeout_s=timeout)
            return _failure(
                capability_id, label, "timeout", f"'{capability_id}' timed out after {timeout}s", elapsed_ms=elapsed
            )
        except CapabilityError as exc:
            elapsed = (self._clock.monotonic() - started) * 1000
            self._logger.warning("capability.invoke.failed", capability=capability_id, error=str(exc))
            return _failure(capability_id, label, "vendor_error", str(exc), elapsed_ms=elapsed)
        elapsed = (self._clock.monotonic() - started) * 1000

        cost = estimated if output.cost is None else output.cost
        credits = 0
        if options.user_id and cost > 0 and self._ledger is not None:
            deduction = await self._ledger.deduct_credits(
                options.user_id,
                capability_id,
                cost,
                {"capability_type": label, "execution_time_ms": round(elapsed, 1)},
            )
            if not deduction.success:
                return _failure(
                    capability_id,
                    label,
                    "insufficient_credits",
                    deduction.reason or INSUFFICIENT_CREDITS,
                    cost=cost,
                    elapsed_ms=elapsed,
                )
            credits = deduction.credits

        self._logger.info(
            "capability.invoke.ok",
            capability=capability_id,
            kind=label,
            cost=cost,
            credits=credits,
            execution_time_ms=round(elapsed, 1),
        )
        return InvocationResult(
            success=True,
            result=output.result,
            cost=cost,
            metadata=InvocationMetadata(
                capability=label,
                capability_id=capability_id,
                execution_time_ms=elapsed,
                credits_consumed=credits,
                tokens_used=output.tokens_used,
            ),
        )

    def select(self, capability: str, options: InvocationOptions | None = None) -> Capability | None:
        opts = options or InvocationOptions()
        return select_best(
            self._registry.by_capability(capability),
            quality_level=opts.quality_level,
            preferred_provider=opts.preferred_provider,
        )

    async def invoke_best(
        self,
        capability: str,
        payload: Mapping[str, Any] | str,
        options: InvocationOptions | None = None,
    ) -> InvocationResult:
        chosen = self.select(capability, options)
        if chosen is None:
            return _failure("", capability, "no_capability", f"No active capability provides {capability}")
        return await self.invoke(chosen.id, payload, options, capability=capability)

    async def generate_text(self, prompt: str, options: InvocationOptions | None = None) -> InvocationResult:
        return await self.invoke_best(TEXT_GENERATION, {"prompt": prompt}, options)

    async def generate_image(self, prompt: str, options: InvocationOptions | None = None) -> InvocationResult:
        return await self.invoke_best(IMAGE_GENERATION, {"prompt": prompt}, options)

    async def generate_video(self, prompt: str, options: InvocationOptions | None = None) -> InvocationResult:
        return await self.invoke_best(VIDEO_GENERATION, {"prompt": prompt}, options)

    async def synthesize_voice(self, text: str, options: InvocationOptions | None = None) -> InvocationResult:
        return await self.invoke_best(VOICE_SYNTHESIS, {"text": text}, options)


def _primary_capability(descriptor: Capability) -> str:
    for name in sorted(descriptor.capabilities):
        if name in _MODEL_METHODS:
            return name
    return next(iter(sorted(descriptor.capabilities)), descriptor.type)


def _normalise_payload(entry: BaseCapability, payload: Mapping[str, Any] | str) -> Mapping[str, Any]:
    if isinstance(payload, str):
        field_name = "prompt" if "prompt" in entry.request_model.model_fields else "text"
        return {field_name: payload}
    return payload


def _resolve_method(entry: BaseCapability, capability: str) -> Callable[[Any], Awaitable[CapabilityOutput]] | None:
    descriptor = entry.descriptor
    if descriptor.type == "model":
        if capability not in descriptor.capabilities:
            return None
        method_name = _MODEL_METHODS.get(capability)
    else:
        method_name = _TYPE_METHODS.get(descriptor.type)
    if method_name is None:
        return None
    return getattr(entry, method_name)


__all__ = [
    "CapabilityInvoker",
    "ErrorCode",
    "InvocationMetadata",
    "InvocationOptions",
    "InvocationResult",
]
