"""Tests for codec module."""

import numpy as np
import pytest

from utterance_stt._types import RejectionCode
from utterance_stt.codec import AudioDecodeError, decode_audio
from wav_helpers import sine_wave, wav_bytes


class TestDecodeAudio:
    """Tests for decoding PCM containers."""

    def test_decode_mono_16bit(self):
        """Test mono 16-bit WAV decodes to the original samples."""
        samples = sine_wave(0.5, sample_rate=16000)
        decoded = decode_audio(wav_bytes(samples, 16000))

        assert decoded.channels == 1
        assert decoded.sample_rate == 16000
        assert decoded.bit_depth == 16
        assert decoded.samples.dtype == np.int16
        np.testing.assert_array_equal(decoded.samples, samples)

    def test_decode_stereo_keeps_interleaving(self):
        """Test stereo samples come back interleaved left/right."""
        interleaved = np.array([100, -100, 200, -200, 300, -300], dtype=np.int16)
        decoded = decode_audio(wav_bytes(interleaved, 44100, channels=2))

        assert decoded.channels == 2
        assert decoded.sample_rate == 44100
        assert len(decoded.samples) == 6
        np.testing.assert_array_equal(decoded.samples, interleaved)

    @pytest.mark.parametrize("rate", [8000, 22050, 48000])
    def test_decode_arbitrary_rates(self, rate):
        """Test source sample rate is reported as stored in the header."""
        decoded = decode_audio(wav_bytes(sine_wave(0.1, rate), rate))
        assert decoded.sample_rate == rate

    def test_empty_payload(self):
        """Test empty input fails with AudioDecodeError."""
        with pytest.raises(AudioDecodeError, match="Failed to read audio data"):
            decode_audio(b"")

    def test_malformed_header(self):
        """Test corrupted RIFF header fails with AudioDecodeError."""
        with pytest.raises(AudioDecodeError) as exc_info:
            decode_audio(b"RIFF\x00\x00\x00\x00WAVEjunk")
        assert exc_info.value.code is RejectionCode.AUDIO_DECODE_ERROR
        assert exc_info.value.detail

    def test_random_bytes(self):
        """Test non-audio bytes fail with AudioDecodeError."""
        with pytest.raises(AudioDecodeError):
            decode_audio(b"definitely not an audio container" * 10)

    def test_unsupported_bit_depth(self):
        """Test 8-bit PCM is rejected and the detail names the depth."""
        samples = np.full(800, 128, dtype=np.uint8)
        with pytest.raises(AudioDecodeError, match="Unsupported audio sample format") as exc_info:
            decode_audio(wav_bytes(samples, 8000, sample_width=1))
        assert "8-bit" in exc_info.value.detail

    def test_error_string_includes_code(self):
        """Test str() renders code, message and detail."""
        error = AudioDecodeError("Failed to read WAV data", "bad header")
        assert str(error) == "[AudioDecodeError] Failed to read WAV data - bad header"
