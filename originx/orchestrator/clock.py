from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from originx.telemetry.logging import get_logger

LOGGER = get_logger(__name__)


class Clock:
    """Wall clock and cooperative sleep, swappable in tests."""

    def __init__(self, tz_name: str | None = None) -> None:
        self._tz = ZoneInfo(tz_name) if tz_name else None

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def local_now(self) -> datetime:
        if self._tz is not None:
            return datetime.now(self._tz)
        return datetime.now().astimezone()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        LOGGER.debug("clock.sleep", seconds=seconds)
        await asyncio.sleep(max(seconds, 0.0))


CLOCK = Clock()


def now() -> datetime:
    return CLOCK.now()


async def sleep(seconds: float) -> None:
    await CLOCK.sleep(seconds)


__all__ = ["Clock", "CLOCK", "now", "sleep"]
