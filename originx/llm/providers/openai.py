from __future__ import annotations

import json
import re
from typing import Any, Sequence

import httpx

from originx.capabilities.registry import Capability
from originx.llm.types import (
    ChatProvider,
    GeneratedScenario,
    LanguageModelError,
    LanguageModelUnavailable,
    LLMReply,
    NameSubject,
)
from originx.orchestrator.events import UserContext
from originx.persona import RESPONSE_FORMAT, build_system_prompt
from originx.telemetry.logging import get_logger

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_NO_NAME = {"", "none", "null", "unknown", "n/a", "no name"}

SCENARIO_PROMPT = """You are {one_name}, an AI creative companion in OriginX. Generate an engaging, personalized scenario for the user based on their context and available AI capabilities.

{context}
Available AI capabilities:
{capabilities}

Generate a scenario that feels personal, showcases a relevant capability naturally, matches their mood and time of day, and encourages creative exploration.

Respond with valid JSON only, an object with keys: title, description, prompt, tags (array of strings)."""

NAME_PROMPT = """Extract the name the speaker wants to give {target} from the utterance below.
Reply with the name only, capitalised, no punctuation. If the utterance contains no name, reply NONE.

Utterance: "{utterance}\""""


def clean_json_response(text: str) -> str:
    """Strip code fences and surrounding prose around the first JSON object."""
    cleaned = _FENCE_RE.sub("", text.strip())
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        return cleaned[start : end + 1]
    return cleaned


class OpenAIProvider(ChatProvider):
    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        chat_model: str = "gpt-4o-mini",
        scenario_model: str = "gpt-4o",
        timeout_s: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._chat_model = chat_model
        self._scenario_model = scenario_model
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout_s, connect=5.0))
        self._logger = get_logger(__name__)
        self.name = "openai"

    def is_ready(self) -> bool:
        return bool(self._api_key)

    async def _chat(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> tuple[str, int | None]:
        if not self._api_key:
            raise LanguageModelUnavailable("OPENAI_API_KEY is not configured")
        payload = {"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        try:
            resp = await self._client.post(
                "/chat/completions",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=payload,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            self._logger.warning("llm.openai.http_error", status=exc.response.status_code, model=model)
            raise LanguageModelError(f"OpenAI returned HTTP {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("llm.openai.request_failed", model=model, error=str(exc))
            raise LanguageModelError(f"OpenAI request failed: {exc}") from exc

        choices = data.get("choices") or []
        text = ""
        if choices:
            text = (choices[0].get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}
        return text.strip(), usage.get("total_tokens")

    async def complete(
        self,
        prompt: str,
        *,
        model: str | None = None,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> LLMReply:
        text, tokens = await self._chat(
            [{"role": "user", "content": prompt}],
            model=model or self._chat_model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return LLMReply(content=text, tokens_used=tokens)

    async def generate_response(self, prompt: str, context: UserContext) -> LLMReply:
        system = f"{build_system_prompt(context)}\n\n{RESPONSE_FORMAT}"
        text, tokens = await self._chat(
            [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            model=self._chat_model,
            temperature=0.7,
            max_tokens=300,
        )
        if not text:
            return LLMReply(content="", tokens_used=tokens)
        try:
            parsed: Any = json.loads(clean_json_response(text))
        except json.JSONDecodeError:
            return LLMReply(content=text, tokens_used=tokens)
        if not isinstance(parsed, dict):
            return LLMReply(content=text, tokens_used=tokens)
        scenario = parsed.get("scenario")
        return LLMReply(
            content=str(parsed.get("content") or "").strip(),
            scenario=scenario if isinstance(scenario, dict) else None,
            next_step=parsed.get("next_step") or parsed.get("nextStep"),
            tokens_used=tokens,
        )

    async def generate_dynamic_scenario(
        self,
        context: UserContext,
        capabilities: Sequence[Capability],
    ) -> GeneratedScenario:
        described = "\n".join(
            f"- {cap.name}: {cap.description} ({', '.join(sorted(cap.capabilities))})" for cap in list(capabilities)[:5]
        )
        system = SCENARIO_PROMPT.format(
            one_name=context.one_name or "One",
            context=build_system_prompt(context).split("\n\n", 1)[-1],
            capabilities=described or "- conversation only",
        )
        text, _ = await self._chat(
            [{"role": "system", "content": system}, {"role": "user", "content": "Generate a personalized scenario for me."}],
            model=self._scenario_model,
            temperature=0.8,
            max_tokens=500,
        )
        try:
            data = json.loads(clean_json_response(text))
        except json.JSONDecodeError as exc:
            raise LanguageModelError("Scenario payload was not valid JSON") from exc
        if not isinstance(data, dict):
            raise LanguageModelError("Scenario payload was not a JSON object")
        tags = data.get("tags")
        return GeneratedScenario(
            title=str(data.get("title") or "Creative Exploration"),
            description=str(data.get("description") or "Let's create something amazing together!"),
            prompt=str(data.get("prompt") or "What would you like to create today?"),
            tags=[str(tag) for tag in tags] if isinstance(tags, list) else ["creative", "ai-generated"],
        )

    async def extract_name(self, utterance: str, subject: NameSubject) -> str | None:
        target = "the AI companion" if subject == "persona" else "themselves"
        text, _ = await self._chat(
            [{"role": "user", "content": NAME_PROMPT.format(target=target, utterance=utterance)}],
            model=self._chat_model,
            temperature=0.0,
            max_tokens=10,
        )
        candidate = text.strip().strip(".!\"'")
        if candidate.lower() in _NO_NAME:
            return None
        return candidate

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["OpenAIProvider", "clean_json_response"]
