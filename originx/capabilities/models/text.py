from __future__ import annotations

from originx.capabilities.registry import (
    TEXT_GENERATION,
    BaseCapability,
    Capability,
    CapabilityError,
    CapabilityMetadata,
    CapabilityOutput,
    TextRequest,
)
from originx.llm.types import ChatProvider, LanguageModelError

# USD per 1K tokens, blended prompt/completion
_TOKEN_PRICES: dict[str, float] = {"gpt-4o": 0.01, "gpt-4o-mini": 0.0006}


class OpenAIChatModel(BaseCapability):
    request_model = TextRequest

    def __init__(self, descriptor: Capability, provider: ChatProvider, model: str) -> None:
        super().__init__(descriptor)
        self._provider = provider
        self._model = model

    def estimate_cost(self, request: TextRequest) -> float:
        price = _TOKEN_PRICES.get(self._model)
        if price is None:
            return self.descriptor.metadata.cost_per_use
        tokens = len(request.prompt) / 4 + request.max_tokens
        return round(tokens / 1000 * price, 6)

    async def generate_text(self, request: TextRequest) -> CapabilityOutput:
        try:
            reply = await self._provider.complete(
                request.prompt,
                model=self._model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
        except LanguageModelError as exc:
            raise CapabilityError(str(exc)) from exc
        cost = None
        price = _TOKEN_PRICES.get(self._model)
        if reply.tokens_used is not None and price is not None:
            cost = round(reply.tokens_used / 1000 * price, 6)
        return CapabilityOutput(
            result={"text": reply.content, "model": self._model},
            cost=cost,
            tokens_used=reply.tokens_used,
        )


def openai_text_models(provider: ChatProvider) -> list[OpenAIChatModel]:
    status = "active" if provider.is_ready() else "inactive"
    return [
        OpenAIChatModel(
            Capability(
                id="openai-gpt-4o",
                name="GPT-4o",
                type="model",
                description="Advanced language model for text generation, analysis, and conversation",
                provider="openai",
                capabilities=frozenset({TEXT_GENERATION}),
                metadata=CapabilityMetadata(
                    cost_per_use=0.03,
                    average_latency_ms=2000,
                    quality_score=0.95,
                    supported_formats=("text",),
                    limitations=("128k context window",),
                ),
                status=status,
            ),
            provider,
            "gpt-4o",
        ),
        OpenAIChatModel(
            Capability(
                id="openai-gpt-4o-mini",
                name="GPT-4o mini",
                type="model",
                description="Fast, efficient language model for general text tasks",
                provider="openai",
                capabilities=frozenset({TEXT_GENERATION}),
                metadata=CapabilityMetadata(
                    cost_per_use=0.005,
                    average_latency_ms=1500,
                    quality_score=0.85,
                    supported_formats=("text",),
                ),
                status=status,
            ),
            provider,
            "gpt-4o-mini",
        ),
    ]


__all__ = ["OpenAIChatModel", "openai_text_models"]
