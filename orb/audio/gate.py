from __future__ import annotations

import io
from dataclasses import dataclass

import numpy as np
import soundfile as sf

from orb.orchestrator.events import AudioBuffer, SignalMetrics
from orb.orchestrator.policies import GatePolicy
from orb.telemetry.logging import get_logger


@dataclass(frozen=True, slots=True)
class Accepted:
    metrics: SignalMetrics


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: str
    metrics: SignalMetrics | None = None


GateVerdict = Accepted | Rejected


def measure(samples: np.ndarray, samplerate: int) -> SignalMetrics:
    """RMS, duration and peak over the first channel of a decoded waveform."""
    data = np.asarray(samples, dtype=np.float64)
    if data.ndim > 1:
        data = data[:, 0]
    if data.size == 0 or samplerate <= 0:
        return SignalMetrics(rms=0.0, duration_seconds=0.0, peak_amplitude=0.0)
    magnitudes = np.abs(data)
    rms = float(np.sqrt(np.mean(magnitudes * magnitudes)))
    return SignalMetrics(
        rms=rms,
        duration_seconds=data.shape[0] / float(samplerate),
        peak_amplitude=float(magnitudes.max()),
    )


class SignalGate:
    """Accept or reject a captured buffer before any network call is made."""

    def __init__(self, policy: GatePolicy | None = None) -> None:
        self._policy = policy or GatePolicy()
        self._logger = get_logger(__name__)

    def evaluate(self, buffer: AudioBuffer) -> GateVerdict:
        if not buffer.data:
            return Rejected(reason="empty")
        try:
            with io.BytesIO(buffer.data) as handle:
                samples, samplerate = sf.read(handle, dtype="float32", always_2d=True)
        except (sf.LibsndfileError, RuntimeError, TypeError) as exc:
            self._logger.warning("gate.decode_failed", error=str(exc), size=len(buffer.data))
            return Rejected(reason="undecodable")
        return self.check(measure(samples, int(samplerate)))

    def check(self, metrics: SignalMetrics) -> GateVerdict:
        if metrics.duration_seconds < self._policy.min_duration_s:
            self._logger.info("gate.rejected", reason="too_short", duration=metrics.duration_seconds)
            return Rejected(reason="too_short", metrics=metrics)
        if metrics.rms < self._policy.min_rms:
            self._logger.info("gate.rejected", reason="too_quiet", rms=metrics.rms)
            return Rejected(reason="too_quiet", metrics=metrics)
        self._logger.debug(
            "gate.accepted",
            rms=metrics.rms,
            duration=metrics.duration_seconds,
            peak=metrics.peak_amplitude,
        )
        return Accepted(metrics=metrics)


__all__ = ["SignalGate", "Accepted", "Rejected", "GateVerdict", "measure"]
