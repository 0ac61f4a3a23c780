"""End-to-end transcription pipeline: decode, condition, recognize, gate."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

from utterance_stt._types import (
    Accepted,
    Rejected,
    TranscriptionError,
    TranscriptionRequest,
    TranscriptionResponse,
)
from utterance_stt.codec import decode_audio
from utterance_stt.conditioner import SignalConditioner
from utterance_stt.config import Config
from utterance_stt.models import ModelCache
from utterance_stt.quality import QualityGate
from utterance_stt.recognizer import RecognitionBackend, create_backend

logger = logging.getLogger(__name__)


class TranscriptionPipeline:
    """Turns an encoded audio clip into an accepted transcript or a rejection.

    Requests are independent: every buffer is local to one call, and the
    only shared object is the model cache. ``transcribe_async`` runs the
    pipeline in a thread pool; timeouts and cancellation are the caller's.
    """

    def __init__(
        self,
        backend: RecognitionBackend,
        conditioner: SignalConditioner | None = None,
        gate: QualityGate | None = None,
        model_cache: ModelCache | None = None,
        language: str = "en",
        executor: ThreadPoolExecutor | None = None,
        max_workers: int = 1,
    ):
        """Initialize pipeline.

        Args:
            backend: Recognizer backend chosen for this deployment
            conditioner: Signal conditioner (defaults to 16 kHz settings)
            gate: Quality gate (defaults to built-in thresholds)
            model_cache: Model cache; defaults to one loading through ``backend``
            language: Language reported with accepted transcripts
            executor: Optional ThreadPoolExecutor for async requests
            max_workers: Worker threads for an owned executor; requests beyond
                this count queue
        """
        self.backend = backend
        self.conditioner = conditioner or SignalConditioner()
        self.gate = gate or QualityGate()
        self.model_cache = model_cache or ModelCache(backend.load_model)
        self.language = language
        self.executor = executor or ThreadPoolExecutor(max_workers=max_workers)
        self._executor_owned = executor is None
        logger.info(
            "TranscriptionPipeline initialized: backend=%s, language=%s",
            backend.name,
            language,
        )

    @classmethod
    def from_config(
        cls,
        cfg: Config,
        executor: ThreadPoolExecutor | None = None,
    ) -> "TranscriptionPipeline":
        backend = create_backend(cfg.model, cfg.recognition)
        return cls(
            backend=backend,
            conditioner=SignalConditioner(
                target_sample_rate=cfg.conditioning.target_sample_rate,
                normalize_peak=cfg.conditioning.normalize_peak,
                highpass_alpha=cfg.conditioning.highpass_alpha,
            ),
            gate=QualityGate(cfg.quality),
            language=cfg.recognition.language,
            executor=executor,
            max_workers=cfg.transcription.max_workers,
        )

    def process(self, request: TranscriptionRequest) -> Accepted | Rejected:
        """Run every stage and return the gate verdict.

        Raises:
            AudioDecodeError: If the container or channel layout is unusable
            RecognitionError: If the model cannot be loaded or decoding fails
        """
        decoded = decode_audio(request.encoded_audio)
        conditioned = self.conditioner.condition(decoded, self.backend.variant)

        silent = self.gate.check_content(conditioned.analysis)
        if silent is not None:
            return silent

        with self.model_cache.acquire(request.model_identifier) as handle:
            segments = self.backend.recognize(conditioned.samples, handle)

        return self.gate.evaluate(
            segments,
            conditioned.sample_count,
            filter_segments=self.backend.filters_segments,
            sample_rate=conditioned.samples.sample_rate,
        )

    def transcribe(self, request: TranscriptionRequest) -> TranscriptionResponse:
        """Run the pipeline and map the outcome to a boundary response.

        Input and recognizer failures become rejected responses carrying
        their error code; any other exception propagates.
        """
        logger.info(
            "Starting transcription (%d bytes, model=%s)",
            len(request.encoded_audio),
            request.model_identifier,
        )
        try:
            verdict = self.process(request)
        except TranscriptionError as e:
            logger.error("Transcription failed: %s", e)
            return TranscriptionResponse.from_error(e)

        if isinstance(verdict, Accepted):
            logger.info("Transcription accepted: '%s'", verdict.text)
        return TranscriptionResponse.from_verdict(verdict, self.language)

    async def transcribe_async(self, request: TranscriptionRequest) -> TranscriptionResponse:
        """Run ``transcribe`` in the executor without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.transcribe, request)

    def shutdown(self, wait: bool = True) -> None:
        """Release idle cached models and stop the executor if owned.

        With ``wait=False`` queued requests are cancelled and a running
        recognition is left to finish in the background.
        """
        logger.info("TranscriptionPipeline shutting down")
        self.model_cache.clear()
        if self._executor_owned and self.executor:
            self.executor.shutdown(wait=wait, cancel_futures=not wait)
            logger.debug("Executor shut down")
