from __future__ import annotations

import asyncio

import numpy as np
import pytest

from orb.audio.analyzer import LevelMixer
from orb.audio.pump import PlaybackLevelPump
from orb.orchestrator.events import ZERO_LEVELS


@pytest.fixture
def anyio_backend():
    return "asyncio"


def tone(seconds: float, samplerate: int = 16_000) -> np.ndarray:
    t = np.arange(int(seconds * samplerate)) / samplerate
    return (0.8 * np.sin(2 * np.pi * 60.0 * t)).astype(np.float32)


@pytest.mark.anyio
async def test_pump_streams_levels_then_resets_to_zero() -> None:
    mixer = LevelMixer()
    seen = []
    mixer.subscribe(seen.append)
    pump = PlaybackLevelPump(mixer.sink("playback"), fps=100.0, grace_s=0.0)

    frames = await pump.run(tone(0.2), 16_000, asyncio.Event())

    assert frames > 1
    assert any(not levels.is_silent() for levels in seen)
    assert seen[-1] == ZERO_LEVELS
    assert mixer.combined == ZERO_LEVELS


@pytest.mark.anyio
async def test_pump_stops_when_playback_finishes_early() -> None:
    sink_calls = []
    pump = PlaybackLevelPump(sink_calls.append, fps=50.0)
    done = asyncio.Event()

    async def finish() -> None:
        await asyncio.sleep(0.05)
        done.set()

    finisher = asyncio.create_task(finish())
    frames = await pump.run(tone(5.0), 16_000, done)
    await finisher

    assert frames < 20
    assert sink_calls[-1] == ZERO_LEVELS


@pytest.mark.anyio
async def test_pump_resets_levels_when_cancelled() -> None:
    sink_calls = []
    pump = PlaybackLevelPump(sink_calls.append, fps=50.0)
    task = asyncio.create_task(pump.run(tone(5.0), 16_000, asyncio.Event()))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert sink_calls[-1] == ZERO_LEVELS


def test_pump_rejects_non_positive_rate() -> None:
    with pytest.raises(ValueError):
        PlaybackLevelPump(lambda levels: None, fps=0)
