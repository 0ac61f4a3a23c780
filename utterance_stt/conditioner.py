"""Signal conditioning: mono down-mix, 16 kHz resampling and format adaptation."""

import logging

import numpy as np
from scipy.signal import lfilter

from utterance_stt._types import (
    TARGET_SAMPLE_RATE,
    ConditionedAudio,
    DecodedAudio,
    RecognizerVariant,
    SampleBuffer,
)
from utterance_stt.codec import AudioDecodeError

logger = logging.getLogger(__name__)

INT16_MIN = -32768
INT16_MAX = 32767
INT16_SCALE = 32768.0


def downmix(samples: np.ndarray, channels: int) -> np.ndarray:
    """Average interleaved stereo pairs into mono int16 samples.

    Mono input is returned as a copy. The integer mean truncates toward zero.

    Raises:
        AudioDecodeError: If channel count is not 1 or 2
    """
    if channels == 1:
        return np.array(samples, dtype=np.int16, copy=True)
    if channels != 2:
        raise AudioDecodeError(
            "Unsupported channel layout",
            f"Expected 1 or 2 channels, got {channels}",
        )

    pairs = np.asarray(samples, dtype=np.int32)
    usable = len(pairs) - (len(pairs) % 2)
    pairs = pairs[:usable].reshape(-1, 2)
    mixed = (pairs[:, 0] + pairs[:, 1]) / 2
    return mixed.astype(np.int16)


def resample_linear(samples: np.ndarray, source_rate: int, target_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """Resample int16 samples by linear interpolation.

    For output index ``i`` the source position is ``i / ratio`` with
    ``ratio = target_rate / source_rate``; the output blends the floor and
    ceil neighbours by the fractional offset. Positions past the last pair
    take the last sample. Equal rates return an unchanged copy.
    """
    if source_rate <= 0:
        raise AudioDecodeError("Invalid audio header", f"sample_rate={source_rate}")

    source = np.asarray(samples, dtype=np.int16)
    if source_rate == target_rate:
        return source.copy()

    n = len(source)
    ratio = target_rate / source_rate
    new_len = int(n * ratio)
    if n == 0 or new_len == 0:
        return np.zeros(0, dtype=np.int16)

    positions = np.arange(new_len, dtype=np.float64) / ratio
    idx = positions.astype(np.int64)
    in_range = idx < n
    positions = positions[in_range]
    idx = idx[in_range]
    frac = positions - idx

    values = source.astype(np.float64)
    has_next = idx + 1 < n
    next_idx = np.where(has_next, idx + 1, idx)
    blended = values[idx] * (1.0 - frac) + values[next_idx] * frac
    out = np.where(has_next, blended, values[idx])
    return out.astype(np.int16)


def to_float(samples: np.ndarray) -> np.ndarray:
    """Scale int16 samples into float32 in [-1.0, 1.0)."""
    return (np.asarray(samples, dtype=np.float32) / INT16_SCALE).astype(np.float32)


def normalize_amplitude(samples: np.ndarray, peak: float = 0.95) -> np.ndarray:
    """Scale int16 samples so the loudest one sits at ``peak`` of full scale.

    All-zero input is returned unchanged.
    """
    source = np.asarray(samples, dtype=np.int16)
    if source.size == 0:
        return source.copy()

    max_abs = int(np.abs(source.astype(np.int32)).max())
    if max_abs == 0:
        return source.copy()

    scale = INT16_MAX / max_abs * peak
    scaled = np.clip(source.astype(np.float64) * scale, INT16_MIN, INT16_MAX)
    return scaled.astype(np.int16)


def high_pass_filter(samples: np.ndarray, alpha: float = 0.98) -> np.ndarray:
    """Single-pole high-pass over int16 samples.

    ``y[n] = alpha * (y[n-1] + x[n] - x[n-1])`` with zero initial state,
    output clamped to the int16 range.
    """
    source = np.asarray(samples, dtype=np.float64)
    if source.size == 0:
        return np.zeros(0, dtype=np.int16)

    filtered = lfilter([alpha, -alpha], [1.0, -alpha], source)
    return np.clip(filtered, INT16_MIN, INT16_MAX).astype(np.int16)


class SignalConditioner:
    """Turns decoded container samples into recognizer-ready mono 16 kHz audio.

    Stages run in a fixed order: down-mix, resample, then format adaptation.
    The streaming variant additionally gets peak normalization followed by
    a DC-blocking high-pass filter. Every stage returns a new array.
    """

    def __init__(
        self,
        target_sample_rate: int = TARGET_SAMPLE_RATE,
        normalize_peak: float = 0.95,
        highpass_alpha: float = 0.98,
    ):
        self.target_sample_rate = target_sample_rate
        self.normalize_peak = normalize_peak
        self.highpass_alpha = highpass_alpha

    def condition(self, audio: DecodedAudio, variant: RecognizerVariant) -> ConditionedAudio:
        """Condition decoded audio for the given recognizer variant.

        Raises:
            AudioDecodeError: If the channel layout or sample rate is unusable
        """
        mono = downmix(audio.samples, audio.channels)
        if audio.sample_rate != self.target_sample_rate:
            logger.debug(
                "Resampling from %d Hz to %d Hz",
                audio.sample_rate,
                self.target_sample_rate,
            )
        resampled = resample_linear(mono, audio.sample_rate, self.target_sample_rate)
        analysis = SampleBuffer(to_float(resampled), self.target_sample_rate)

        if variant is RecognizerVariant.BATCH:
            samples = analysis
        else:
            normalized = normalize_amplitude(resampled, self.normalize_peak)
            filtered = high_pass_filter(normalized, self.highpass_alpha)
            samples = SampleBuffer(filtered, self.target_sample_rate)

        logger.debug(
            "Conditioned audio: %d samples (%.2fs) for %s recognizer",
            len(samples),
            samples.duration,
            variant.value,
        )
        return ConditionedAudio(samples=samples, analysis=analysis, variant=variant)
