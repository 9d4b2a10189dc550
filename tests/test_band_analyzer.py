from __future__ import annotations

import numpy as np
import pytest

from orb.audio.analyzer import FrequencyBandAnalyzer, LevelMixer, byte_frequency_data
from orb.orchestrator.events import ZERO_LEVELS, AudioLevels


def test_uniform_frame_maps_every_band_to_same_level() -> None:
    levels = FrequencyBandAnalyzer().analyze([255] * 1024)
    assert levels == AudioLevels(bass=1.0, mid=1.0, treble=1.0, volume=1.0)


def test_band_boundaries() -> None:
    frame = np.zeros(1024, dtype=np.uint8)
    frame[0:10] = 255
    frame[50:100] = 51
    levels = FrequencyBandAnalyzer().analyze(frame)
    assert levels.bass == pytest.approx(1.0)
    assert levels.mid == 0.0
    assert levels.treble == pytest.approx(0.2)
    assert levels.volume == pytest.approx(0.4)


def test_empty_frame_is_silent() -> None:
    assert FrequencyBandAnalyzer().analyze([]).is_silent()


def test_short_frame_leaves_missing_bands_at_zero() -> None:
    levels = FrequencyBandAnalyzer().analyze([255] * 20)
    assert levels.bass == pytest.approx(1.0)
    assert levels.mid == pytest.approx(1.0)
    assert levels.treble == 0.0


def test_byte_frequency_data_shape_and_silence() -> None:
    silent = byte_frequency_data(np.zeros(4096, dtype=np.float32), fft_size=2048)
    assert silent.shape == (1024,)
    assert silent.dtype == np.uint8
    assert not silent.any()


def test_byte_frequency_data_low_tone_lands_in_bass() -> None:
    samplerate = 16_000
    t = np.arange(2048) / samplerate
    tone = 0.8 * np.sin(2 * np.pi * 40.0 * t)
    levels = FrequencyBandAnalyzer().analyze(byte_frequency_data(tone, 2048))
    assert levels.bass > levels.treble


def test_mixer_takes_loudest_source_and_falls_back_to_zero() -> None:
    mixer = LevelMixer()
    seen: list[AudioLevels] = []
    mixer.subscribe(seen.append)

    mixer.push("microphone", AudioLevels(0.2, 0.5, 0.1, 0.3))
    mixer.sink("playback")(AudioLevels(0.6, 0.1, 0.1, 0.2))
    assert mixer.combined == AudioLevels(0.6, 0.5, 0.1, 0.3)

    mixer.clear("microphone")
    mixer.clear("playback")
    assert mixer.combined == ZERO_LEVELS
    assert seen[-1] == ZERO_LEVELS
    assert len(seen) == 4
