"""Heuristic quality gate for recognizer output.

Classifies raw recognizer segments into an accepted transcript or a typed
rejection. The checks run in a fixed order and the first failing check
ends evaluation. Rejections are returned as values, never raised.
"""

import logging
import math
from collections import Counter
from collections.abc import Sequence

import numpy as np

from utterance_stt._types import (
    TARGET_SAMPLE_RATE,
    Accepted,
    RecognitionSegment,
    Rejected,
    RejectionCode,
    SampleBuffer,
)
from utterance_stt.config import QualityConfig

logger = logging.getLogger(__name__)

# Sign-off phrases recognizers tack onto the end of short clips. Families
# are tried in declaration order; inside a family the first matching
# variant wins, so longer variants are listed first.
HALLUCINATED_ENDINGS: tuple[tuple[str, ...], ...] = (
    ("thank you.", "thank you!", "thank you"),
    ("thanks.", "thanks!", "thanks"),
    ("you're welcome.", "you're welcome!", "you're welcome"),
    ("bye bye.", "bye bye!", "bye bye", "bye.", "bye!", "bye"),
    ("goodbye.", "goodbye!", "goodbye"),
    ("see you later.", "see you later!", "see you later", "see you.", "see you!", "see you"),
)

# Whole-transcript artifacts. Only a full match rejects.
EXACT_HALLUCINATIONS: tuple[str, ...] = (
    # video sign-offs
    "thanks for watching",
    "thank you for watching",
    "please subscribe",
    "like and subscribe",
    "don't forget to subscribe",
    "hit the bell",
    "hit that bell",
    "welcome back everybody",
    "hey guys",
    "what's up guys",
    "like comment and subscribe",
    "smash that like button",
    # non-speech markers
    "[music]",
    "[applause]",
    "[laughter]",
    "[inaudible]",
    "[silence]",
    "[background music]",
    "[noise]",
    "audio jungle",
    "audiojungle",
    # filler repetitions
    "you you you",
    "you you you you",
    "the the the",
    "the the the the",
    "and and and",
    "and and and and",
    # punctuation
    ".",
    "..",
    "...",
    "....",
) + tuple(variant for family in HALLUCINATED_ENDINGS for variant in family)

_TERMINAL_PUNCTUATION = (".", "!", "?")

MESSAGES = {
    RejectionCode.SILENT_AUDIO: "Audio appears to be silent or too quiet",
    RejectionCode.NO_VALID_SEGMENTS: "No valid speech segments detected",
    RejectionCode.EMPTY_TRANSCRIPTION: "No speech was transcribed",
    RejectionCode.INSUFFICIENT_SPEECH: "Transcription too short",
    RejectionCode.HALLUCINATION_DETECTED: "Speech recognition produced unreliable result",
    RejectionCode.LOW_QUALITY_TRANSCRIPTION: "Transcription quality is too low",
    RejectionCode.ABNORMAL_SPEECH_RATE: "Detected abnormal speech rate",
    RejectionCode.REPETITIVE_TEXT: "Speech recognition produced repetitive result",
}


def _reject(code: RejectionCode, detail: str) -> Rejected:
    logger.info("Rejected transcription (%s): %s", code.value, detail)
    return Rejected(code=code, message=MESSAGES[code], detail=detail)


def audio_levels(samples: np.ndarray) -> tuple[float, float]:
    """Return ``(rms, peak)`` of float samples; empty input is ``(0.0, 0.0)``."""
    data = np.asarray(samples, dtype=np.float64)
    if data.size == 0:
        return 0.0, 0.0
    rms = float(np.sqrt(np.mean(data**2)))
    peak = float(np.max(np.abs(data)))
    return rms, peak


def is_repetitive(text: str, max_word_share: float = 0.4) -> bool:
    """Detect looping recognizer output.

    Text of four or more words is repetitive when one lowercase word makes
    up more than ``max_word_share`` of all words, or when a bigram is
    immediately followed by itself.
    """
    words = [word.lower() for word in text.split()]
    if len(words) < 4:
        return False

    counts = Counter(words)
    if any(count / len(words) > max_word_share for count in counts.values()):
        return True

    for i in range(len(words) - 3):
        if words[i] == words[i + 2] and words[i + 1] == words[i + 3]:
            return True

    return False


def text_entropy(text: str) -> float:
    """Shannon entropy in bits of the lowercase alphabetic characters in ``text``."""
    counts = Counter(ch.lower() for ch in text if ch.isalpha())
    total = sum(counts.values())
    if total == 0:
        return 0.0

    entropy = 0.0
    for count in counts.values():
        p = count / total
        entropy -= p * math.log2(p)
    return entropy


def is_pure_repetition(text: str, min_words: int = 3) -> bool:
    """True when ``text`` has at least ``min_words`` words, all equal ignoring case."""
    words = [word.lower() for word in text.split()]
    if len(words) < min_words:
        return False
    return all(word == words[0] for word in words)


def trim_hallucinated_endings(
    text: str,
    endings: Sequence[Sequence[str]] = HALLUCINATED_ENDINGS,
    min_preceding_words: int = 3,
    min_words_for_period: int = 5,
) -> str:
    """Strip sign-off phrases that were appended to otherwise complete speech.

    Each family removes at most one phrase, and only when the phrase sits
    on a word boundary after at least ``min_preceding_words`` words. Text
    already ending in terminal punctuation is kept as-is; otherwise it must
    have ``min_words_for_period`` words and gains a period if it ends in an
    alphanumeric character.
    """
    cleaned = text.strip()

    for family in endings:
        for ending in family:
            if len(cleaned) < len(ending):
                continue
            idx = len(cleaned) - len(ending)
            if cleaned[idx:].lower() != ending:
                continue
            if idx > 0 and cleaned[idx - 1].isalnum():
                continue

            before = cleaned[:idx].strip()
            word_count = len(before.split())
            if word_count < min_preceding_words:
                continue

            if before.endswith(_TERMINAL_PUNCTUATION):
                cleaned = before
            elif word_count >= min_words_for_period:
                cleaned = f"{before}." if before[-1].isalnum() else before
            else:
                continue

            logger.debug("Removed likely hallucinated ending: '%s'", ending)
            break

    return cleaned


class QualityGate:
    """Sequential validator for recognizer output.

    ``check_content`` runs before recognition on the analysis buffer;
    ``evaluate`` runs the remaining checks on the recognized segments.
    """

    def __init__(
        self,
        config: QualityConfig | None = None,
        endings: Sequence[Sequence[str]] = HALLUCINATED_ENDINGS,
        exact_hallucinations: Sequence[str] = EXACT_HALLUCINATIONS,
    ):
        self.config = config or QualityConfig()
        self.endings = tuple(tuple(family) for family in endings)
        self.exact_hallucinations = frozenset(phrase.lower() for phrase in exact_hallucinations)

    def check_content(self, buffer: SampleBuffer) -> Rejected | None:
        """Reject buffers with neither RMS nor peak above the silence thresholds."""
        rms, peak = audio_levels(buffer.samples)
        has_content = (
            rms > self.config.silence_rms_threshold
            or peak > self.config.silence_peak_threshold
        )
        logger.debug(
            "Audio analysis: RMS=%.6f, Max=%.6f, Has content=%s", rms, peak, has_content
        )
        if has_content:
            return None
        return _reject(
            RejectionCode.SILENT_AUDIO,
            f"RMS {rms:.6f} <= {self.config.silence_rms_threshold} and peak amplitude "
            f"{peak:.6f} <= {self.config.silence_peak_threshold}; speak louder and "
            f"check that the microphone is working",
        )

    def segment_rejection(self, text: str) -> str | None:
        """Return why a single segment should be dropped, or None to keep it."""
        trimmed = text.strip()
        if is_repetitive(trimmed, self.config.repetition_word_share):
            return "repetitive content"
        if len(trimmed) < self.config.segment_min_chars or len(trimmed.split()) < self.config.segment_min_words:
            return "too short"
        if not any(ch.isalpha() for ch in trimmed):
            return "no alphabetic characters"
        return None

    def filter_segments(self, segments: Sequence[RecognitionSegment]) -> list[RecognitionSegment]:
        """Drop repetitive, tiny and non-alphabetic segments, keeping order."""
        kept = []
        for i, segment in enumerate(segments):
            logger.debug("Segment %d: text='%s'", i, segment.text.strip())
            reason = self.segment_rejection(segment.text)
            if reason is not None:
                logger.debug("  Skipping segment %d due to %s", i, reason)
                continue
            kept.append(segment)
        return kept

    def evaluate(
        self,
        segments: Sequence[RecognitionSegment],
        sample_count: int,
        *,
        filter_segments: bool = True,
        sample_rate: int = TARGET_SAMPLE_RATE,
    ) -> Accepted | Rejected:
        """Classify recognizer segments into a verdict.

        Args:
            segments: Recognizer output in temporal order
            sample_count: Number of conditioned samples that were recognized
            filter_segments: Apply per-segment filtering (batch recognizers)
            sample_rate: Rate of the conditioned samples

        Returns:
            Accepted with the cleaned transcript, or Rejected with a reason
        """
        cfg = self.config

        if filter_segments:
            kept = self.filter_segments(segments)
            if not kept:
                return _reject(
                    RejectionCode.NO_VALID_SEGMENTS,
                    f"All {len(segments)} recognized segments were repetitive, shorter than "
                    f"{cfg.segment_min_chars} characters / {cfg.segment_min_words} words, "
                    f"or had no letters; speak more clearly",
                )
        else:
            kept = list(segments)

        text = " ".join(s.text.strip() for s in kept if s.text.strip())
        text = trim_hallucinated_endings(text, self.endings)
        logger.debug("Text after cleaning endings: '%s'", text)

        checks = (
            lambda: self.check_length(text),
            lambda: self.check_hallucination(text),
            lambda: self.check_entropy(text),
            lambda: self.check_speech_rate(len(text.split()), sample_count, sample_rate),
            lambda: self.check_repetition(text),
        )
        for check in checks:
            rejection = check()
            if rejection is not None:
                return rejection

        logger.debug("Text passed quality gate: '%s'", text)
        return Accepted(text=text)

    def check_length(self, text: str) -> Rejected | None:
        cfg = self.config
        if not text:
            return _reject(
                RejectionCode.EMPTY_TRANSCRIPTION,
                "No recognizable speech was detected; speak clearly into the microphone",
            )

        word_count = len(text.split())
        if len(text) < cfg.min_text_chars or word_count < cfg.min_text_words:
            return _reject(
                RejectionCode.INSUFFICIENT_SPEECH,
                f"'{text}' has {len(text)} characters and {word_count} words; need at least "
                f"{cfg.min_text_chars} characters and {cfg.min_text_words} words",
            )
        return None

    def check_hallucination(self, text: str) -> Rejected | None:
        """Reject whole-text denylist matches and single-word loops."""
        if text.lower().strip() in self.exact_hallucinations:
            return _reject(
                RejectionCode.HALLUCINATION_DETECTED,
                f"Detected phrase '{text}' which matches a known recognizer artifact",
            )

        if is_pure_repetition(text):
            return _reject(
                RejectionCode.HALLUCINATION_DETECTED,
                f"Detected phrase '{text}' which repeats a single word",
            )
        return None

    def check_entropy(self, text: str) -> Rejected | None:
        """Reject gibberish; only applies past ``entropy_min_length`` characters."""
        cfg = self.config
        if len(text) <= cfg.entropy_min_length:
            return None

        entropy = text_entropy(text)
        logger.debug("Text entropy: %.2f", entropy)
        if entropy < cfg.entropy_min or entropy > cfg.entropy_max:
            return _reject(
                RejectionCode.LOW_QUALITY_TRANSCRIPTION,
                f"Character entropy {entropy:.2f} bits is outside "
                f"[{cfg.entropy_min}, {cfg.entropy_max}]; speak in complete sentences",
            )
        return None

    def check_speech_rate(
        self,
        word_count: int,
        sample_count: int,
        sample_rate: int = TARGET_SAMPLE_RATE,
    ) -> Rejected | None:
        """Reject implausible words-per-second; short clips are exempt."""
        cfg = self.config
        duration = sample_count / float(sample_rate) if sample_rate > 0 else 0.0
        if duration <= cfg.speech_rate_min_duration:
            return None

        words_per_second = word_count / duration
        logger.debug(
            "Speech rate: %.2f words/second (duration: %.2fs, words: %d)",
            words_per_second,
            duration,
            word_count,
        )
        if words_per_second < cfg.speech_rate_min or words_per_second > cfg.speech_rate_max:
            return _reject(
                RejectionCode.ABNORMAL_SPEECH_RATE,
                f"Speech rate of {words_per_second:.1f} words/second over {duration:.1f}s "
                f"is outside [{cfg.speech_rate_min}, {cfg.speech_rate_max}]; speak at a normal pace",
            )
        return None

    def check_repetition(self, text: str) -> Rejected | None:
        if is_repetitive(text, self.config.repetition_word_share):
            return _reject(
                RejectionCode.REPETITIVE_TEXT,
                f"A word or word pair repeats too often in '{text}' (word share limit "
                f"{self.config.repetition_word_share:.0%})",
            )
        return None
