from __future__ import annotations

import io
import threading
import time

import numpy as np
import sounddevice as sd
import soundfile as sf

from orb.errors import CapturePermissionDenied
from orb.orchestrator.events import AudioBuffer
from orb.telemetry.logging import get_logger


class AudioCapture:
    """Push-to-talk recorder: one input stream per capture, released at stop."""

    def __init__(
        self,
        samplerate: int = 16_000,
        channels: int = 1,
        device: str | int | None = None,
    ) -> None:
        self.samplerate = samplerate
        self.channels = channels
        self._device = device
        self._stream: sd.InputStream | None = None
        self._chunks: list[np.ndarray] = []
        self._chunks_lock = threading.Lock()
        self._started_at = 0.0
        self._logger = get_logger(__name__)

    async def start(self) -> None:
        if self._stream:
            return

        def callback(indata, frames, time_info, status) -> None:  # type: ignore[override]
            if status:
                self._logger.warning("audio.capture.status", status=str(status))
            with self._chunks_lock:
                self._chunks.append(indata.copy())

        with self._chunks_lock:
            self._chunks = []
        try:
            stream = sd.InputStream(
                samplerate=self.samplerate,
                channels=self.channels,
                dtype="float32",
                callback=callback,
                device=self._device,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            self._logger.error("audio.capture.unavailable", device=self._device, error=str(exc))
            raise CapturePermissionDenied(str(exc)) from exc
        self._stream = stream
        self._started_at = time.time()
        self._logger.info("audio.capture.started", samplerate=self.samplerate, device=self._device)

    async def stop(self) -> AudioBuffer | None:
        """Close the stream and return whatever audio was captured (None if nothing)."""
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
        with self._chunks_lock:
            chunks, self._chunks = self._chunks, []
        self._logger.info("audio.capture.stopped", chunks=len(chunks))
        if not chunks:
            return None
        samples = np.concatenate(chunks, axis=0)
        if samples.size == 0:
            return None
        with io.BytesIO() as handle:
            sf.write(handle, samples, self.samplerate, format="WAV", subtype="PCM_16")
            payload = handle.getvalue()
        return AudioBuffer(data=payload, captured_at=self._started_at, sample_rate=self.samplerate)


__all__ = ["AudioCapture"]
