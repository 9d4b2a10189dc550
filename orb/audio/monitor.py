from __future__ import annotations

import asyncio

import numpy as np
import sounddevice as sd

from orb.audio.analyzer import FrequencyBandAnalyzer, LevelMixer, byte_frequency_data
from orb.errors import CapturePermissionDenied
from orb.orchestrator.events import AudioLevels
from orb.telemetry.logging import get_logger

SOURCE = "microphone"


class MicLevelMonitor:
    """Live microphone meter for audio reactivity.

    Runs on its own input stream, independent of turn state, and only ever
    talks to the level mixer.
    """

    def __init__(
        self,
        mixer: LevelMixer,
        samplerate: int = 16_000,
        fft_size: int = 2048,
        device: str | int | None = None,
        analyzer: FrequencyBandAnalyzer | None = None,
    ) -> None:
        self._mixer = mixer
        self._samplerate = samplerate
        self._fft_size = fft_size
        self._device = device
        self._analyzer = analyzer or FrequencyBandAnalyzer()
        self._stream: sd.InputStream | None = None
        self._generation = 0
        self._logger = get_logger(__name__)

    @property
    def running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream:
            return
        loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation

        def callback(indata, frames, time_info, status) -> None:  # type: ignore[override]
            levels = self._analyzer.analyze(byte_frequency_data(np.asarray(indata), self._fft_size))
            loop.call_soon_threadsafe(self._push, generation, levels)

        try:
            stream = sd.InputStream(
                samplerate=self._samplerate,
                channels=1,
                blocksize=self._fft_size,
                dtype="float32",
                callback=callback,
                device=self._device,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._logger.error("audio.monitor.unavailable", error=str(exc))
            raise CapturePermissionDenied(str(exc)) from exc
        self._stream = stream
        self._logger.info("audio.monitor.started")

    def _push(self, generation: int, levels: AudioLevels) -> None:
        # Frames queued by a stream that has since been stopped are dropped.
        if generation == self._generation and self._stream is not None:
            self._mixer.push(SOURCE, levels)

    def stop(self) -> None:
        stream = self._stream
        self._generation += 1
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
            self._logger.info("audio.monitor.stopped")
        self._mixer.clear(SOURCE)


__all__ = ["MicLevelMonitor"]
