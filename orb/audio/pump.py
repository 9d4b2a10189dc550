from __future__ import annotations

import asyncio

import numpy as np

from orb.audio.analyzer import FrequencyBandAnalyzer, LevelListener, byte_frequency_data
from orb.orchestrator.clock import CLOCK, Clock
from orb.orchestrator.events import ZERO_LEVELS
from orb.telemetry.logging import get_logger


class PlaybackLevelPump:
    """Feeds per-frame levels of the audio currently playing to a sink.

    The pump follows the playback position by wall-clock time and stops when
    ``done`` is set or the clip length (plus ``grace_s``) has elapsed. The sink
    always receives ZERO_LEVELS last.
    """

    def __init__(
        self,
        sink: LevelListener,
        analyzer: FrequencyBandAnalyzer | None = None,
        fft_size: int = 2048,
        fps: float = 60.0,
        grace_s: float = 0.5,
        clock: Clock = CLOCK,
    ) -> None:
        if fps <= 0:
            raise ValueError("fps must be positive")
        self._sink = sink
        self._analyzer = analyzer or FrequencyBandAnalyzer()
        self._fft_size = fft_size
        self._interval = 1.0 / fps
        self._grace_s = grace_s
        self._clock = clock
        self._logger = get_logger(__name__)

    async def run(self, samples: np.ndarray, samplerate: int, done: asyncio.Event) -> int:
        frames = 0
        total = samples.shape[0] if samples.ndim else 0
        limit_s = (total / float(samplerate) if samplerate > 0 else 0.0) + self._grace_s
        started = self._clock.monotonic()
        try:
            while not done.is_set():
                elapsed = self._clock.monotonic() - started
                if elapsed > limit_s:
                    self._logger.debug("pump.deadline", elapsed=elapsed)
                    break
                position = min(int(elapsed * samplerate), total)
                window = samples[max(position - self._fft_size, 0) : position]
                self._sink(self._analyzer.analyze(byte_frequency_data(window, self._fft_size)))
                frames += 1
                try:
                    await asyncio.wait_for(done.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._sink(ZERO_LEVELS)
        return frames


__all__ = ["PlaybackLevelPump"]
