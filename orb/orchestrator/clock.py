from __future__ import annotations

import asyncio
import time

from orb.telemetry.logging import get_logger

LOGGER = get_logger(__name__)


class Clock:
    """Asynchronous clock helper for debounces and frame pumps."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        LOGGER.debug("clock.sleep", seconds=seconds)
        await asyncio.sleep(seconds)


CLOCK = Clock()


__all__ = ["Clock", "CLOCK"]
