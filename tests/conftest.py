"""Shared fixtures for utterance_stt tests."""

import numpy as np
import pytest

from wav_helpers import sine_wave, wav_bytes


@pytest.fixture
def make_wav():
    """Factory building WAV bytes from int16 samples."""
    return wav_bytes


@pytest.fixture
def tone_wav():
    """Factory building a WAV sine tone of a given duration."""

    def _create(duration: float = 3.0, sample_rate: int = 16000) -> bytes:
        return wav_bytes(sine_wave(duration, sample_rate), sample_rate)

    return _create


@pytest.fixture
def silent_wav():
    """Factory building an all-zero WAV clip of a given duration."""

    def _create(duration: float = 3.0, sample_rate: int = 16000) -> bytes:
        return wav_bytes(np.zeros(int(duration * sample_rate), dtype=np.int16), sample_rate)

    return _create
