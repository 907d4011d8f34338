from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Sequence

if TYPE_CHECKING:
    from originx.capabilities.registry import Capability
    from originx.orchestrator.events import UserContext

NameSubject = Literal["persona", "user"]


class LanguageModelError(Exception):
    """The language-model vendor failed (network, HTTP status, malformed payload)."""


class LanguageModelUnavailable(LanguageModelError):
    """No credentials are configured for the language model."""


@dataclass(slots=True)
class LLMReply:
    content: str
    scenario: dict[str, Any] | None = None
    next_step: str | None = None
    tokens_used: int | None = None


@dataclass(slots=True)
class GeneratedScenario:
    title: str
    description: str
    prompt: str
    tags: list[str] = field(default_factory=list)


class ChatProvider:
    """Contract for the conversational language model.

    Vendor failures raise :class:`LanguageModelError`; an empty ``content`` or a
    ``None`` name means the model answered but had nothing useful to say.
    """

    name: str

    def is_ready(self) -> bool:
        raise NotImplementedError

    async def complete(
        self,
        prompt: str,
        *,
        model: str | None = None,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> LLMReply:
        raise NotImplementedError

    async def generate_response(self, prompt: str, context: "UserContext") -> LLMReply:
        raise NotImplementedError

    async def generate_dynamic_scenario(
        self,
        context: "UserContext",
        capabilities: Sequence["Capability"],
    ) -> GeneratedScenario:
        raise NotImplementedError

    async def extract_name(self, utterance: str, subject: NameSubject) -> str | None:
        raise NotImplementedError


__all__ = [
    "ChatProvider",
    "GeneratedScenario",
    "LLMReply",
    "LanguageModelError",
    "LanguageModelUnavailable",
    "NameSubject",
]
