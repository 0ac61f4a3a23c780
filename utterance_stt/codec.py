"""Decoding of encoded audio containers into raw PCM samples."""

import io
import logging

import numpy as np
import soundfile

from utterance_stt._types import DecodedAudio, RejectionCode, TranscriptionError

logger = logging.getLogger(__name__)

# libsndfile subtype names mapped to bit depth
_SUPPORTED_SUBTYPES = {"PCM_16": 16}
_SUBTYPE_BIT_DEPTHS = {
    "PCM_S8": 8,
    "PCM_U8": 8,
    "PCM_16": 16,
    "PCM_24": 24,
    "PCM_32": 32,
    "FLOAT": 32,
    "DOUBLE": 64,
}


class AudioDecodeError(TranscriptionError):
    """Container header is malformed or the sample format is unsupported."""

    code = RejectionCode.AUDIO_DECODE_ERROR


def decode_audio(data: bytes) -> DecodedAudio:
    """Decode a 16-bit PCM container into interleaved int16 samples.

    Args:
        data: Encoded container bytes (WAV or any format libsndfile reads)

    Returns:
        DecodedAudio with interleaved samples, channel count and sample rate

    Raises:
        AudioDecodeError: If the header cannot be parsed, the bit depth is
            not 16, or the stream declares no channels
    """
    if not data:
        raise AudioDecodeError("Failed to read audio data", "Audio payload is empty")

    try:
        with soundfile.SoundFile(io.BytesIO(data)) as sound_file:
            subtype = sound_file.subtype
            channels = sound_file.channels
            sample_rate = sound_file.samplerate

            if subtype not in _SUPPORTED_SUBTYPES:
                bit_depth = _SUBTYPE_BIT_DEPTHS.get(subtype)
                described = f"{bit_depth}-bit" if bit_depth else subtype
                raise AudioDecodeError(
                    "Unsupported audio sample format",
                    f"Expected 16-bit PCM, got {described} ({sound_file.format}/{subtype})",
                )

            frames = sound_file.read(dtype="int16", always_2d=True)
    except AudioDecodeError:
        raise
    except Exception as e:
        logger.error("Failed to parse audio container: %s", e)
        raise AudioDecodeError("Failed to read WAV data", str(e)) from e

    if channels <= 0 or sample_rate <= 0:
        raise AudioDecodeError(
            "Invalid audio header",
            f"channels={channels}, sample_rate={sample_rate}",
        )

    samples = np.ascontiguousarray(frames, dtype=np.int16).reshape(-1)
    logger.debug(
        "Decoded audio: %d frames, %d channels, %d Hz",
        len(frames),
        channels,
        sample_rate,
    )
    return DecodedAudio(
        samples=samples,
        channels=channels,
        sample_rate=sample_rate,
        bit_depth=_SUPPORTED_SUBTYPES[subtype],
    )

