from __future__ import annotations

import functools
from pathlib import Path
from typing import Any, Literal, Mapping, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field

Difficulty = Literal["beginner", "intermediate", "advanced"]


class Scenario(BaseModel):
    """Immutable conversational prompt, canned or generated."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    title: str
    description: str = ""
    prompt: str
    difficulty: Difficulty = "beginner"
    estimated_time: int = Field(default=3, ge=0, description="Minutes")
    tags: frozenset[str] = frozenset()
    capabilities: tuple[str, ...] = ()

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags


class ScenarioCatalog:
    def __init__(
        self,
        general: Sequence[Scenario],
        onboarding: Mapping[str, Sequence[Scenario]] | None = None,
    ) -> None:
        if not general:
            raise ValueError("Scenario catalog needs at least one general scenario")
        self._general = tuple(general)
        self._onboarding = {step: tuple(items) for step, items in (onboarding or {}).items()}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ScenarioCatalog":
        general = [Scenario.model_validate(item) for item in raw.get("general", [])]
        onboarding = {
            str(step): [Scenario.model_validate(item) for item in items or []]
            for step, items in (raw.get("onboarding") or {}).items()
        }
        return cls(general=general, onboarding=onboarding)

    @property
    def general(self) -> tuple[Scenario, ...]:
        return self._general

    def onboarding(self, step: str) -> tuple[Scenario, ...]:
        return self._onboarding.get(step, ())

    def first(self) -> Scenario:
        return self._general[0]

    def get(self, scenario_id: str) -> Scenario | None:
        for scenario in self._general:
            if scenario.id == scenario_id:
                return scenario
        for items in self._onboarding.values():
            for scenario in items:
                if scenario.id == scenario_id:
                    return scenario
        return None

    def __len__(self) -> int:
        return len(self._general)


def default_catalog_path() -> Path:
    return Path(__file__).with_name("catalog.yml")


@functools.lru_cache(maxsize=1)
def load_catalog(path: Path | None = None) -> ScenarioCatalog:
    config_path = path or default_catalog_path()
    if not config_path.exists():
        raise FileNotFoundError(config_path)
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Scenario catalog at {config_path} must be a mapping")
    return ScenarioCatalog.from_dict(raw)


__all__ = ["Difficulty", "Scenario", "ScenarioCatalog", "default_catalog_path", "load_catalog"]
