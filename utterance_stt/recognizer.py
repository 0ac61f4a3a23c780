"""Speech recognition backends: faster-whisper batch decoding and Vosk streaming."""

import abc
import json
import logging

import numpy as np

from utterance_stt._types import (
    ModelHandle,
    RecognitionSegment,
    RecognizerVariant,
    RejectionCode,
    SampleBuffer,
    TranscriptionError,
)
from utterance_stt.config import ModelConfig, RecognitionConfig
from utterance_stt.models import explicit_model_path, resolve_model_path

logger = logging.getLogger(__name__)


class RecognitionError(TranscriptionError):
    """Model loading or decoding failed."""

    code = RejectionCode.RECOGNITION_ERROR


class RecognitionBackend(abc.ABC):
    """Interface for recognizer families.

    Backends turn conditioned samples into raw segments and know nothing
    about transcript quality.
    """

    name: str
    variant: RecognizerVariant

    @property
    def filters_segments(self) -> bool:
        """Whether the quality gate should filter segments one by one."""
        return self.variant is RecognizerVariant.BATCH

    @abc.abstractmethod
    def load_model(self, identifier: str) -> ModelHandle:
        """Load a model for ``identifier``.

        Raises:
            RecognitionError: If the model cannot be loaded
        """
        raise NotImplementedError

    @abc.abstractmethod
    def recognize(self, samples: SampleBuffer, model: ModelHandle) -> list[RecognitionSegment]:
        """Recognize conditioned samples with a loaded model.

        Raises:
            RecognitionError: If the handle is invalid or decoding fails
        """
        raise NotImplementedError


class WhisperBatchBackend(RecognitionBackend):
    """Beam-search decoding of a whole clip with faster-whisper.

    Decoding is deterministic and tuned against hallucination: no prior
    context, multi-segment output, blank and non-speech suppression, and
    per-segment log-probability, compression-ratio and no-speech thresholds.
    """

    name = "faster_whisper"
    variant = RecognizerVariant.BATCH

    def __init__(
        self,
        device: str = "cpu",
        compute_type: str = "int8",
        model_directory: str | None = None,
        beam_size: int = 5,
        language: str = "en",
        temperature: float = 0.0,
        patience: float = 1.0,
        log_prob_threshold: float = -1.0,
        compression_ratio_threshold: float = 2.4,
        no_speech_threshold: float = 0.6,
        cpu_threads: int = 4,
    ):
        """Initialize the batch backend.

        Args:
            device: Device to run on (cpu, cuda, auto)
            compute_type: Compute precision (int8, float16, float32)
            model_directory: Custom cache directory for model weights
            beam_size: Beam search width for decoding
            language: Fixed language code for decoding
            temperature: Sampling temperature (0 for deterministic decoding)
            patience: Beam search patience factor
            log_prob_threshold: Drop segments whose average log-probability is lower
            compression_ratio_threshold: Drop segments that compress too well (loops)
            no_speech_threshold: Probability above which a segment counts as silence
            cpu_threads: Threads used for CPU inference
        """
        self.device = device
        self.compute_type = compute_type
        self.model_directory = model_directory
        self.beam_size = beam_size
        self.language = language
        self.temperature = temperature
        self.patience = patience
        self.log_prob_threshold = log_prob_threshold
        self.compression_ratio_threshold = compression_ratio_threshold
        self.no_speech_threshold = no_speech_threshold
        self.cpu_threads = cpu_threads
        logger.info(
            "WhisperBatchBackend initialized: device=%s, compute_type=%s, beam_size=%d",
            device,
            compute_type,
            beam_size,
        )

    def load_model(self, identifier: str) -> ModelHandle:
        try:
            from faster_whisper import WhisperModel

            local_path = explicit_model_path(identifier)
            model = WhisperModel(
                str(local_path) if local_path else identifier,
                device=self.device,
                compute_type=self.compute_type,
                cpu_threads=self.cpu_threads,
                download_root=self.model_directory,
            )
        except Exception as e:
            logger.error(
                "Failed to load model %s on device %s: %s",
                identifier,
                self.device,
                e,
            )
            raise RecognitionError(
                "Failed to load Whisper model",
                f"Model '{identifier}' on device '{self.device}' with compute_type "
                f"'{self.compute_type}': {e}",
            ) from e
        return ModelHandle(identifier=identifier, model=model)

    def recognize(self, samples: SampleBuffer, model: ModelHandle) -> list[RecognitionSegment]:
        whisper = getattr(model, "model", None)
        if whisper is None or not hasattr(whisper, "transcribe"):
            raise RecognitionError(
                "Invalid model handle",
                f"Handle for '{getattr(model, 'identifier', model)}' holds no Whisper model",
            )
        if not samples.is_float:
            raise RecognitionError(
                "Invalid sample format",
                f"Whisper expects float samples, got {samples.samples.dtype}",
            )

        audio = np.asarray(samples.samples, dtype=np.float32)
        try:
            segments, _info = whisper.transcribe(
                audio,
                language=self.language,
                task="transcribe",
                beam_size=self.beam_size,
                patience=self.patience,
                temperature=self.temperature,
                condition_on_previous_text=False,
                suppress_blank=True,
                suppress_tokens=[-1],
                log_prob_threshold=self.log_prob_threshold,
                compression_ratio_threshold=self.compression_ratio_threshold,
                no_speech_threshold=self.no_speech_threshold,
                initial_prompt=None,
                without_timestamps=True,
            )
            # segments is a lazy generator; decoding happens here
            texts = [segment.text for segment in segments]
        except Exception as e:
            logger.error("Whisper decoding failed: %s", e, exc_info=True)
            raise RecognitionError("Failed to transcribe audio", str(e)) from e

        logger.info("Whisper produced %d segment(s)", len(texts))
        return [RecognitionSegment(text=text or "", index=i) for i, text in enumerate(texts)]


class VoskStreamingBackend(RecognitionBackend):
    """Incremental recognition with a Vosk (Kaldi) recognizer.

    Samples are fed in fixed windows. Utterances closed at endpoints and
    the final result are merged into a single segment.
    """

    name = "vosk"
    variant = RecognizerVariant.STREAMING

    def __init__(
        self,
        model_directory: str | None = None,
        window_seconds: float = 0.5,
    ):
        self.model_directory = model_directory
        self.window_seconds = window_seconds
        logger.info(
            "VoskStreamingBackend initialized: model_directory=%s, window=%.2fs",
            model_directory,
            window_seconds,
        )

    def load_model(self, identifier: str) -> ModelHandle:
        path = resolve_model_path(identifier, self.model_directory)
        if path is None:
            raise RecognitionError(
                "Vosk model not found",
                f"Model '{identifier}' is not available in {self.model_directory or 'the working directory'}",
            )
        try:
            from vosk import Model, SetLogLevel

            SetLogLevel(-1)
            model = Model(str(path))
        except Exception as e:
            logger.error("Failed to load Vosk model %s: %s", path, e)
            raise RecognitionError("Failed to load Vosk model", f"{path}: {e}") from e
        return ModelHandle(identifier=identifier, model=model)

    def recognize(self, samples: SampleBuffer, model: ModelHandle) -> list[RecognitionSegment]:
        if getattr(model, "model", None) is None:
            raise RecognitionError(
                "Invalid model handle",
                f"Handle for '{getattr(model, 'identifier', model)}' holds no Vosk model",
            )
        if samples.samples.dtype != np.int16:
            raise RecognitionError(
                "Invalid sample format",
                f"Vosk expects int16 samples, got {samples.samples.dtype}",
            )

        window = max(1, int(samples.sample_rate * self.window_seconds))
        pcm = np.ascontiguousarray(samples.samples, dtype="<i2")
        utterances = []
        try:
            from vosk import KaldiRecognizer

            recognizer = KaldiRecognizer(model.model, samples.sample_rate)
            for start in range(0, len(pcm), window):
                # True marks an endpoint; Result() must be read before the next feed
                if recognizer.AcceptWaveform(pcm[start:start + window].tobytes()):
                    utterances.append(json.loads(recognizer.Result()).get("text") or "")
            utterances.append(json.loads(recognizer.FinalResult()).get("text") or "")
        except Exception as e:
            logger.error("Vosk decoding failed: %s", e, exc_info=True)
            raise RecognitionError("Failed to transcribe audio", str(e)) from e

        text = " ".join(part.strip() for part in utterances if part.strip())
        logger.info(
            "Vosk produced %d characters from %d utterance(s)",
            len(text),
            len(utterances),
        )
        return [RecognitionSegment(text=text, index=0)]


def create_backend(
    model_cfg: ModelConfig,
    recognition_cfg: RecognitionConfig | None = None,
) -> RecognitionBackend:
    """Build the recognizer backend selected in configuration.

    Raises:
        ValueError: If the backend name is unknown
    """
    recognition_cfg = recognition_cfg or RecognitionConfig()

    if model_cfg.backend == "faster_whisper":
        return WhisperBatchBackend(
            device=model_cfg.device,
            compute_type=model_cfg.compute_type,
            model_directory=model_cfg.model_directory,
            beam_size=model_cfg.beam_size,
            language=recognition_cfg.language,
            temperature=recognition_cfg.temperature,
            patience=recognition_cfg.patience,
            log_prob_threshold=recognition_cfg.log_prob_threshold,
            compression_ratio_threshold=recognition_cfg.compression_ratio_threshold,
            no_speech_threshold=recognition_cfg.no_speech_threshold,
        )
    if model_cfg.backend == "vosk":
        return VoskStreamingBackend(
            model_directory=model_cfg.model_directory,
            window_seconds=recognition_cfg.window_seconds,
        )
    raise ValueError(f"Unknown backend: {model_cfg.backend}")
