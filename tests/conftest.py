from __future__ import annotations

import io
from collections.abc import Callable

import numpy as np
import pytest
import soundfile as sf


def _wav(seconds: float, amplitude: float, samplerate: int = 16_000) -> bytes:
    t = np.arange(int(seconds * samplerate)) / samplerate
    samples = (amplitude * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)
    handle = io.BytesIO()
    sf.write(handle, samples, samplerate, format="WAV", subtype="PCM_16")
    return handle.getvalue()


@pytest.fixture
def make_wav() -> Callable[..., bytes]:
    return _wav
