from __future__ import annotations

import asyncio
import io
from typing import Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from orb.audio.pump import PlaybackLevelPump
from orb.errors import PlaybackError
from orb.telemetry.logging import get_logger


class AudioOutputController:
    """Long-lived playback device shared across turns, separate from capture."""

    def __init__(self, pump: PlaybackLevelPump | None = None, device: str | int | None = None) -> None:
        self._lock = asyncio.Lock()
        self._pump = pump
        self._device = device
        self._current_tag: Optional[str] = None
        self._current_done: Optional[asyncio.Event] = None
        self._logger = get_logger(__name__)

    async def play(self, audio: bytes, tag: str = "reply") -> float:
        """Decode a WAV payload, play it and return its duration in seconds."""
        if not audio:
            raise PlaybackError("empty audio payload")
        try:
            with io.BytesIO(audio) as buffer:
                data, samplerate = sf.read(buffer, dtype="float32")
        except RuntimeError as exc:
            self._logger.error("audio.output.decode_failed", tag=tag, error=str(exc))
            raise PlaybackError(f"could not decode audio: {exc}") from exc
        return await self.play_array(np.asarray(data), int(samplerate), tag)

    async def play_array(self, data: np.ndarray, samplerate: int, tag: str) -> float:
        if samplerate <= 0 or data.size == 0:
            self._logger.warning("audio.output.invalid_payload", tag=tag, samplerate=samplerate, frames=int(data.size))
            raise PlaybackError("invalid audio payload")

        duration = data.shape[0] / float(samplerate)
        loop = asyncio.get_running_loop()
        done_event = asyncio.Event()
        failure: list[BaseException] = []

        async with self._lock:
            self._current_tag = tag
            self._current_done = done_event

            def _play() -> None:
                try:
                    sd.play(data, samplerate=samplerate, device=self._device, blocking=False)
                    sd.wait()
                except sd.PortAudioError as exc:
                    self._logger.error("audio.output.play_error", tag=tag, error=str(exc))
                    failure.append(exc)
                finally:
                    try:
                        sd.stop()
                    finally:
                        loop.call_soon_threadsafe(done_event.set)

            player = asyncio.create_task(asyncio.to_thread(_play))
            try:
                if self._pump is not None:
                    await self._pump.run(data, samplerate, done_event)
                await done_event.wait()
                await player
            finally:
                self._current_tag = None
                self._current_done = None

        if failure:
            raise PlaybackError(str(failure[0])) from failure[0]
        self._logger.info("audio.output.finished", tag=tag, duration=duration)
        return duration

    async def stop(self, tag: str | None = None) -> bool:
        """Stop current playback if tags match (or any playback when tag is None)."""
        current_tag = self._current_tag
        done = self._current_done
        if current_tag is None:
            return False
        if tag is not None and current_tag != tag:
            return False
        sd.stop()
        if done:
            await done.wait()
        return True


__all__ = ["AudioOutputController"]
