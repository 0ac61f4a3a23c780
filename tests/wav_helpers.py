"""WAV fixtures synthesized in memory."""

import io
import wave

import numpy as np


def wav_bytes(
    samples: np.ndarray,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> bytes:
    """Write interleaved samples into an in-memory WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(sample_width)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(np.asarray(samples).tobytes())
    return buffer.getvalue()


def sine_wave(
    duration: float,
    sample_rate: int = 16000,
    frequency: float = 440.0,
    amplitude: float = 0.5,
) -> np.ndarray:
    """Generate an int16 sine tone."""
    num_samples = int(sample_rate * duration)
    audio_data = amplitude * np.sin(2 * np.pi * frequency * np.arange(num_samples) / sample_rate)
    return np.clip(audio_data * 32767, -32768, 32767).astype(np.int16)
