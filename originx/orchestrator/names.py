from __future__ import annotations

import asyncio
import re

from originx.llm.types import ChatProvider, LanguageModelError, NameSubject
from originx.telemetry.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_NAMES: dict[str, str] = {"persona": "One", "user": "User"}

STOPWORDS = frozenset(
    {
        "hi", "hello", "hey", "hiya", "yo", "sup", "yes", "yeah", "yep", "no", "nope", "nah",
        "ok", "okay", "sure", "fine", "thanks", "thank", "please", "maybe", "whatever",
        "the", "a", "an", "and", "or", "but", "so", "just", "really", "very", "not",
        "you", "me", "i", "my", "your", "it", "this", "that", "what", "why", "how", "who", "when",
        "hmm", "um", "uh", "lol", "cool", "nice", "good", "great", "awesome", "wow",
        "tired", "happy", "sad", "ready", "here", "back", "done", "sorry", "test", "name",
    }
)
_PLACEHOLDERS = frozenset({"one", "user", "name", "none", "null", "unknown", "assistant", "ai", "n/a"})

_NAME_TOKEN = r"([A-Za-z][A-Za-z'\-]*)"
_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"\bcall (?:you|me)\s+{_NAME_TOKEN}", re.IGNORECASE),
    re.compile(rf"\bmy name is\s+{_NAME_TOKEN}", re.IGNORECASE),
    re.compile(rf"\byour name (?:is|will be|should be)\s+{_NAME_TOKEN}", re.IGNORECASE),
    re.compile(rf"\bname (?:you|is)\s+{_NAME_TOKEN}", re.IGNORECASE),
    re.compile(rf"\b(?:i am|i'm|im)\s+{_NAME_TOKEN}", re.IGNORECASE),
    re.compile(rf"\b(?:it's|its|how about)\s+{_NAME_TOKEN}", re.IGNORECASE),
)
_SINGLE_TOKEN = re.compile(r"^[A-Za-z]+$")


def _capitalise(token: str) -> str:
    return token[:1].upper() + token[1:]


def _acceptable(candidate: str) -> bool:
    lowered = candidate.lower()
    return bool(candidate) and lowered not in STOPWORDS and lowered not in _PLACEHOLDERS


def extract_name_by_rules(utterance: str, subject: NameSubject) -> str:
    """Pattern match, then a lone alphabetic token, then the subject's default name."""
    text = utterance.strip().strip(".!?,")
    for pattern in _PATTERNS:
        match = pattern.search(text)
        if match and _acceptable(match.group(1)):
            return _capitalise(match.group(1).strip("'-"))
    if _SINGLE_TOKEN.match(text) and text.lower() not in STOPWORDS:
        return _capitalise(text.lower())
    return DEFAULT_NAMES[subject]


async def extract_name(
    utterance: str,
    subject: NameSubject,
    llm: ChatProvider | None = None,
    timeout_s: float = 10.0,
) -> str:
    if llm is not None and llm.is_ready():
        try:
            candidate = await asyncio.wait_for(llm.extract_name(utterance, subject), timeout=timeout_s)
        except (LanguageModelError, asyncio.TimeoutError) as exc:
            LOGGER.info("names.ai_extraction.failed", subject=subject, error=str(exc))
            candidate = None
        if candidate:
            cleaned = candidate.strip().strip(".!?\"'")
            if cleaned and len(cleaned) <= 40 and _acceptable(cleaned) and re.fullmatch(r"[^\W\d_][\w' \-]*", cleaned):
                return _capitalise(cleaned)
            LOGGER.info("names.ai_extraction.placeholder", subject=subject, candidate=candidate)
    return extract_name_by_rules(utterance, subject)


__all__ = ["DEFAULT_NAMES", "STOPWORDS", "extract_name", "extract_name_by_rules"]
