from __future__ import annotations

from typing import Literal, Sequence

from originx.capabilities.registry import Capability

QualityLevel = Literal["fast", "balanced", "high"]


def value_ratio(capability: Capability) -> float:
    """Quality per dollar; free or unpriced capabilities count as costing 1."""
    cost = capability.metadata.cost_per_use or 1.0
    return capability.metadata.quality_score / cost


def select_best(
    candidates: Sequence[Capability],
    quality_level: QualityLevel = "balanced",
    preferred_provider: str | None = None,
) -> Capability | None:
    """Pick one candidate; earlier entries win ties.

    ``fast`` minimises average latency, ``high`` maximises quality score and
    ``balanced`` maximises :func:`value_ratio`. A preferred provider narrows the
    pool when it matches at least one candidate.
    """
    pool = [item for item in candidates if item.status == "active"]
    if preferred_provider:
        preferred = [item for item in pool if item.provider == preferred_provider]
        pool = preferred or pool
    if not pool:
        return None
    if quality_level == "fast":
        return min(pool, key=lambda item: item.metadata.average_latency_ms)
    if quality_level == "high":
        return max(pool, key=lambda item: item.metadata.quality_score)
    return max(pool, key=value_ratio)


__all__ = ["QualityLevel", "select_best", "value_ratio"]
