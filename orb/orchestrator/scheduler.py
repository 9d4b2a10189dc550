from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import NamedTuple

from orb.orchestrator.clock import CLOCK, Clock
from orb.telemetry.logging import get_logger


class LoopFlags(NamedTuple):
    enabled: bool
    is_capturing: bool
    is_processing: bool


class AutoLoopScheduler:
    """Re-arms capture after a debounce for hands-free conversation.

    Flags are checked when the request arrives and again, live, when the
    debounce fires; capture starts only through the supplied guarded entry.
    """

    def __init__(
        self,
        probe: Callable[[], LoopFlags],
        start_capture: Callable[[], Awaitable[bool]],
        debounce_s: float = 0.35,
        clock: Clock = CLOCK,
    ) -> None:
        self._probe = probe
        self._start_capture = start_capture
        self._debounce_s = debounce_s
        self._clock = clock
        self._pending: asyncio.Task[bool] | None = None
        self._logger = get_logger(__name__)

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def maybe_resume(self, enabled: bool, is_capturing: bool, is_processing: bool) -> bool:
        if not enabled or is_capturing or is_processing:
            return False
        if self.pending:
            return False
        self._pending = asyncio.create_task(self._fire(), name="autoloop-resume")
        self._logger.debug("autoloop.scheduled", debounce_s=self._debounce_s)
        return True

    def cancel(self) -> None:
        # The firing task may itself end up here (capture failure disables the loop).
        if self.pending and self._pending is not asyncio.current_task():
            assert self._pending is not None
            self._pending.cancel()
            self._logger.debug("autoloop.cancelled")
        self._pending = None

    async def _fire(self) -> bool:
        await self._clock.sleep(self._debounce_s)
        flags = self._probe()
        if not flags.enabled or flags.is_capturing or flags.is_processing:
            self._logger.debug("autoloop.skipped", **flags._asdict())
            return False
        started = await self._start_capture()
        self._logger.info("autoloop.resumed", started=started)
        return started


__all__ = ["AutoLoopScheduler", "LoopFlags"]
