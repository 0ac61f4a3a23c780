"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

TARGET_SAMPLE_RATE = 16000


class RejectionCode(Enum):
    """Typed reasons a transcription request can end without a transcript."""

    AUDIO_DECODE_ERROR = "AudioDecodeError"
    RECOGNITION_ERROR = "RecognitionError"
    SILENT_AUDIO = "SilentAudio"
    NO_VALID_SEGMENTS = "NoValidSegments"
    EMPTY_TRANSCRIPTION = "EmptyTranscription"
    INSUFFICIENT_SPEECH = "InsufficientSpeech"
    HALLUCINATION_DETECTED = "HallucinationDetected"
    LOW_QUALITY_TRANSCRIPTION = "LowQualityTranscription"
    ABNORMAL_SPEECH_RATE = "AbnormalSpeechRate"
    REPETITIVE_TEXT = "RepetitiveText"


class RecognizerVariant(Enum):
    """Recognizer family selected at configuration time."""

    BATCH = "batch"
    STREAMING = "streaming"


class TranscriptionError(Exception):
    """Base exception for fatal input and recognizer failures."""

    code: RejectionCode = RejectionCode.RECOGNITION_ERROR

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        text = f"[{self.code.value}] {self.message}"
        if self.detail:
            text += f" - {self.detail}"
        return text


@dataclass(frozen=True)
class DecodedAudio:
    """Raw interleaved 16-bit samples parsed out of an audio container."""

    samples: np.ndarray
    channels: int
    sample_rate: int
    bit_depth: int = 16


@dataclass(frozen=True)
class SampleBuffer:
    """Read-only mono samples at a fixed sample rate.

    ``samples`` is either int16 PCM or float32 normalized to [-1.0, 1.0].
    """

    samples: np.ndarray
    sample_rate: int = TARGET_SAMPLE_RATE

    def __post_init__(self) -> None:
        samples = np.array(self.samples, copy=True)
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / float(self.sample_rate)

    @property
    def is_float(self) -> bool:
        return np.issubdtype(self.samples.dtype, np.floating)


@dataclass(frozen=True)
class ConditionedAudio:
    """Output of the signal conditioner.

    ``samples`` is in the format the selected recognizer consumes.
    ``analysis`` is the float view of the mono 16 kHz signal before any
    variant-specific gain or filtering, used for content-presence checks.
    """

    samples: SampleBuffer
    analysis: SampleBuffer
    variant: RecognizerVariant

    @property
    def sample_count(self) -> int:
        return len(self.samples)


@dataclass(frozen=True)
class RecognitionSegment:
    """One span of recognizer output in temporal order."""

    text: str
    index: int = 0


@dataclass(frozen=True)
class ModelHandle:
    """Opaque reference to a loaded acoustic model."""

    identifier: str
    model: Any = field(repr=False, compare=False)


@dataclass(frozen=True)
class Accepted:
    """Gate verdict carrying the final transcript."""

    text: str


@dataclass(frozen=True)
class Rejected:
    """Gate verdict explaining why the transcript was refused."""

    code: RejectionCode
    message: str
    detail: str = ""


@dataclass(frozen=True)
class TranscriptionRequest:
    """Inbound request: encoded container bytes plus the model to use."""

    encoded_audio: bytes
    model_identifier: str


@dataclass
class TranscriptionResponse:
    """Outbound result; exactly one of ``accepted`` or ``rejected`` is set."""

    accepted: dict | None = None
    rejected: dict | None = None

    @classmethod
    def from_verdict(
        cls,
        verdict: Accepted | Rejected,
        language: str,
    ) -> "TranscriptionResponse":
        if isinstance(verdict, Accepted):
            return cls(
                accepted={"text": verdict.text, "language": language}
            )
        return cls(
            rejected={
                "code": verdict.code.value,
                "message": verdict.message,
                "detail": verdict.detail,
            }
        )

    @classmethod
    def from_error(cls, error: TranscriptionError) -> "TranscriptionResponse":
        return cls(
            rejected={
                "code": error.code.value,
                "message": error.message,
                "detail": error.detail,
            }
        )

    @property
    def ok(self) -> bool:
        return self.accepted is not None

    def to_dict(self) -> dict:
        if self.accepted is not None:
            return {"Accepted": dict(self.accepted)}
        return {"Rejected": dict(self.rejected or {})}
