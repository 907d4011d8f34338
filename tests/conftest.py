from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from originx.orchestrator.clock import Clock


class FrozenClock(Clock):
    """Clock pinned to one moment; sleeps are recorded and only yield to the loop."""

    def __init__(self, moment: datetime) -> None:
        super().__init__()
        self.moment = moment
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.moment

    def local_now(self) -> datetime:
        return self.moment

    def advance(self, seconds: float) -> None:
        self.moment += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def evening_clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 5, 3, 19, 30, tzinfo=timezone.utc))


@pytest.fixture
def morning_clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 5, 3, 8, 15, tzinfo=timezone.utc))
