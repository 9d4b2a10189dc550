from __future__ import annotations

import asyncio

import pytest

from orb.orchestrator.clock import Clock
from orb.orchestrator.scheduler import AutoLoopScheduler, LoopFlags


@pytest.fixture
def anyio_backend():
    return "asyncio"


class ManualClock(Clock):
    """Sleeps until the test releases it."""

    def __init__(self) -> None:
        self.requested: list[float] = []
        self.release = asyncio.Event()

    async def sleep(self, seconds: float) -> None:
        self.requested.append(seconds)
        await self.release.wait()


class Harness:
    def __init__(self) -> None:
        self.flags = LoopFlags(enabled=True, is_capturing=False, is_processing=False)
        self.starts = 0

    def probe(self) -> LoopFlags:
        return self.flags

    async def start_capture(self) -> bool:
        self.starts += 1
        return True


def make_scheduler(harness: Harness, clock: ManualClock) -> AutoLoopScheduler:
    return AutoLoopScheduler(harness.probe, harness.start_capture, debounce_s=0.35, clock=clock)


@pytest.mark.anyio
async def test_resume_fires_after_debounce() -> None:
    harness, clock = Harness(), ManualClock()
    scheduler = make_scheduler(harness, clock)

    assert scheduler.maybe_resume(True, False, False) is True
    await asyncio.sleep(0)
    assert clock.requested == [0.35]
    assert harness.starts == 0

    clock.release.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert harness.starts == 1
    assert scheduler.pending is False


@pytest.mark.anyio
async def test_blocked_flags_do_not_schedule() -> None:
    harness, clock = Harness(), ManualClock()
    scheduler = make_scheduler(harness, clock)

    assert scheduler.maybe_resume(False, False, False) is False
    assert scheduler.maybe_resume(True, True, False) is False
    assert scheduler.maybe_resume(True, False, True) is False
    assert scheduler.pending is False


@pytest.mark.anyio
async def test_flags_are_rechecked_when_debounce_fires() -> None:
    harness, clock = Harness(), ManualClock()
    scheduler = make_scheduler(harness, clock)

    scheduler.maybe_resume(True, False, False)
    await asyncio.sleep(0)
    harness.flags = LoopFlags(enabled=True, is_capturing=True, is_processing=False)
    clock.release.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert harness.starts == 0


@pytest.mark.anyio
async def test_pending_resume_coalesces_and_cancels() -> None:
    harness, clock = Harness(), ManualClock()
    scheduler = make_scheduler(harness, clock)

    assert scheduler.maybe_resume(True, False, False) is True
    assert scheduler.maybe_resume(True, False, False) is False
    scheduler.cancel()
    assert scheduler.pending is False

    clock.release.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert harness.starts == 0
