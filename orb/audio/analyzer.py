from __future__ import annotations

import threading
from collections.abc import Callable, Sequence

import numpy as np

from orb.orchestrator.events import ZERO_LEVELS, AudioLevels

BASS_BAND = (0, 10)
MID_BAND = (10, 50)
TREBLE_BAND = (50, 100)

MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


def _band_mean(frame: np.ndarray, start: int, end: int) -> float:
    band = frame[start:end]
    if band.size == 0:
        return 0.0
    return float(band.mean())


class FrequencyBandAnalyzer:
    """Reduce a 0-255 magnitude frame to bass/mid/treble/volume levels."""

    def analyze(self, frame: Sequence[int] | np.ndarray) -> AudioLevels:
        data = np.asarray(frame, dtype=np.float64)
        if data.size == 0:
            return ZERO_LEVELS
        bass = _band_mean(data, *BASS_BAND) / 255.0
        mid = _band_mean(data, *MID_BAND) / 255.0
        treble = _band_mean(data, *TREBLE_BAND) / 255.0
        volume = (bass + mid + treble) / 3.0
        return AudioLevels(bass=bass, mid=mid, treble=treble, volume=volume)


def byte_frequency_data(samples: np.ndarray, fft_size: int = 2048) -> np.ndarray:
    """Magnitude spectrum of the trailing ``fft_size`` samples scaled to uint8.

    Mirrors an analyser node: Blackman window, magnitudes in dB mapped from
    [MIN_DECIBELS, MAX_DECIBELS] onto [0, 255]. Returns ``fft_size // 2`` bins.
    """
    bins = fft_size // 2
    mono = np.asarray(samples, dtype=np.float32)
    if mono.ndim > 1:
        mono = mono.mean(axis=1)
    if mono.size == 0:
        return np.zeros(bins, dtype=np.uint8)
    window = np.zeros(fft_size, dtype=np.float32)
    tail = mono[-fft_size:]
    window[fft_size - tail.size :] = tail
    spectrum = np.abs(np.fft.rfft(window * np.blackman(fft_size)))[:bins] / fft_size
    with np.errstate(divide="ignore"):
        decibels = 20.0 * np.log10(spectrum)
    scaled = (decibels - MIN_DECIBELS) * (255.0 / (MAX_DECIBELS - MIN_DECIBELS))
    return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)


LevelListener = Callable[[AudioLevels], None]


class LevelMixer:
    """Combines per-source levels (microphone, playback) into one visualization feed.

    The combined output is the element-wise maximum over active sources, so it
    falls back to ZERO_LEVELS as soon as every source has been cleared.
    """

    def __init__(self) -> None:
        self._sources: dict[str, AudioLevels] = {}
        self._listeners: list[LevelListener] = []
        self._lock = threading.Lock()
        self._combined = ZERO_LEVELS

    @property
    def combined(self) -> AudioLevels:
        return self._combined

    def subscribe(self, listener: LevelListener) -> None:
        self._listeners.append(listener)

    def push(self, source: str, levels: AudioLevels) -> None:
        with self._lock:
            self._sources[source] = levels
            combined = self._merge_locked()
        self._emit(combined)

    def clear(self, source: str) -> None:
        with self._lock:
            self._sources.pop(source, None)
            combined = self._merge_locked()
        self._emit(combined)

    def sink(self, source: str) -> LevelListener:
        return lambda levels: self.push(source, levels)

    def _merge_locked(self) -> AudioLevels:
        active = list(self._sources.values())
        if not active:
            self._combined = ZERO_LEVELS
        else:
            self._combined = AudioLevels(
                bass=max(level.bass for level in active),
                mid=max(level.mid for level in active),
                treble=max(level.treble for level in active),
                volume=max(level.volume for level in active),
            )
        return self._combined

    def _emit(self, combined: AudioLevels) -> None:
        for listener in self._listeners:
            listener(combined)


__all__ = ["FrequencyBandAnalyzer", "byte_frequency_data", "LevelMixer", "LevelListener"]
