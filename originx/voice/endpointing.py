from __future__ import annotations

from originx.orchestrator.policies import VoiceTimings

TERMINAL_PUNCTUATION = (".", "!", "?")


def silence_timeout(transcript: str, timings: VoiceTimings | None = None) -> float:
    """Seconds of silence after an interim result before the utterance counts as finished."""
    timings = timings or VoiceTimings()
    text = transcript.strip()
    if text.endswith(TERMINAL_PUNCTUATION):
        return timings.punctuation_timeout_s
    if len(text.split()) <= 2:
        return timings.short_timeout_s
    return timings.default_timeout_s


__all__ = ["TERMINAL_PUNCTUATION", "silence_timeout"]
