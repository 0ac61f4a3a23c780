"""Configuration loader and validation."""

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "ModelConfig",
    "RecognitionConfig",
    "ConditioningConfig",
    "QualityConfig",
    "TranscriptionConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
    "VALID_BACKENDS",
]

CONFIG_ENV_VAR = "UTTERANCE_STT_CONFIG"
CONFIG_FILENAME = "utterance_stt.toml"

VALID_BACKENDS = ("faster_whisper", "vosk")
VALID_DEVICES = ("cpu", "cuda", "auto")
VALID_COMPUTE_TYPES = ("int8", "float16", "float32", "default")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class ModelConfig:
    """Recognizer model selection.

    ``backend`` picks the recognizer family for the whole deployment:
    ``faster_whisper`` decodes in batch, ``vosk`` accepts audio incrementally.
    """

    backend: str = "faster_whisper"
    name: str = "small"
    device: str = "cpu"
    compute_type: str = "int8"
    model_directory: str | None = None
    beam_size: int = 5


@dataclass
class RecognitionConfig:
    """Decoding parameters that keep recognizer hallucinations down."""

    language: str = "en"
    temperature: float = 0.0
    patience: float = 1.0
    log_prob_threshold: float = -1.0
    compression_ratio_threshold: float = 2.4
    no_speech_threshold: float = 0.6
    window_seconds: float = 0.5


@dataclass
class ConditioningConfig:
    """Signal conditioning settings."""

    target_sample_rate: int = 16000
    normalize_peak: float = 0.95
    highpass_alpha: float = 0.98


@dataclass
class QualityConfig:
    """Thresholds for the transcript quality gate."""

    silence_rms_threshold: float = 0.001
    silence_peak_threshold: float = 0.01
    segment_min_chars: int = 3
    segment_min_words: int = 2
    min_text_chars: int = 5
    min_text_words: int = 2
    entropy_min_length: int = 30
    entropy_min: float = 1.0
    entropy_max: float = 5.5
    speech_rate_min_duration: float = 2.0
    speech_rate_min: float = 0.3
    speech_rate_max: float = 8.0
    repetition_word_share: float = 0.4


@dataclass
class TranscriptionConfig:
    """Caller-side request policy."""

    timeout: float = 60.0
    max_workers: int = 1


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False


@dataclass
class Config:
    """Main configuration container."""

    model: ModelConfig = field(default_factory=ModelConfig)
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    conditioning: ConditioningConfig = field(default_factory=ConditioningConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. UTTERANCE_STT_CONFIG env var
                  2. ./utterance_stt.toml
                  3. ~/.config/utterance_stt.toml
                  Falls back to built-in defaults when none exist.
            env: Environment variables (defaults to os.environ)

        Returns:
            Loaded and validated Config instance

        Raises:
            ConfigError: If an explicit file is missing or validation fails
        """
        if env is None:
            import os

            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        if resolved_path is None:
            logger.info("No config file found, using defaults")
            raw_data = {}
        else:
            raw_data = _load_toml_file(resolved_path)

        try:
            coerced = _coerce_config_values(raw_data)
            cfg = cls(
                model=ModelConfig(**coerced["model"]),
                recognition=RecognitionConfig(**coerced["recognition"]),
                conditioning=ConditioningConfig(**coerced["conditioning"]),
                quality=QualityConfig(**coerced["quality"]),
                transcription=TranscriptionConfig(**coerced["transcription"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

        cfg.validate()
        return cfg

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any section holds an invalid value
        """
        try:
            validate_model_config(self.model)
            validate_recognition_config(self.recognition)
            validate_conditioning_config(self.conditioning)
            validate_quality_config(self.quality)
            validate_transcription_config(self.transcription)
        except ConfigError:
            raise
        except Exception as e:
            raise ConfigError(f"Validation failed: {e}") from e


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    candidates = []
    if env_path := env.get(CONFIG_ENV_VAR):
        env_candidate = Path(env_path)
        if not env_candidate.exists():
            raise ConfigError(f"Config file from {CONFIG_ENV_VAR} not found: {env_candidate}")
        candidates.append(env_candidate)

    candidates.append(Path(CONFIG_FILENAME))
    candidates.append(Path.home() / ".config" / CONFIG_FILENAME)

    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict) -> dict:
    """Split raw TOML data into per-section dictionaries.

    Raises:
        ConfigError: If a section is not a table
    """
    coerced = {}

    for section in ("model", "recognition", "conditioning", "quality", "transcription", "general"):
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    unknown = set(raw_data) - set(coerced)
    if unknown:
        logger.warning("Ignoring unknown config sections: %s", ", ".join(sorted(unknown)))

    return coerced


def validate_model_config(model_cfg: ModelConfig) -> None:
    """Validate model configuration.

    Raises:
        ConfigError: If model configuration is invalid
    """
    if model_cfg.backend not in VALID_BACKENDS:
        raise ConfigError(
            f"Invalid backend '{model_cfg.backend}'. "
            f"Must be one of: {', '.join(VALID_BACKENDS)}"
        )

    if model_cfg.compute_type not in VALID_COMPUTE_TYPES:
        raise ConfigError(
            f"Invalid compute_type '{model_cfg.compute_type}'. "
            f"Must be one of: {', '.join(VALID_COMPUTE_TYPES)}"
        )

    if model_cfg.device not in VALID_DEVICES:
        raise ConfigError(
            f"Invalid device '{model_cfg.device}'. "
            f"Must be one of: {', '.join(VALID_DEVICES)}"
        )

    if not model_cfg.name:
        raise ConfigError("model.name must be a non-empty string")

    if model_cfg.beam_size <= 0:
        raise ConfigError(f"beam_size must be positive, got {model_cfg.beam_size}")


def validate_recognition_config(recognition_cfg: RecognitionConfig) -> None:
    """Validate decoding parameters.

    Raises:
        ConfigError: If recognition configuration is invalid
    """
    if not recognition_cfg.language or recognition_cfg.language == "auto":
        raise ConfigError("recognition.language must name a fixed language code")

    if recognition_cfg.temperature < 0:
        raise ConfigError(
            f"temperature must be non-negative, got {recognition_cfg.temperature}"
        )

    if recognition_cfg.window_seconds <= 0:
        raise ConfigError(
            f"window_seconds must be positive, got {recognition_cfg.window_seconds}"
        )

    if not 0.0 <= recognition_cfg.no_speech_threshold <= 1.0:
        raise ConfigError(
            f"no_speech_threshold must be within [0, 1], got {recognition_cfg.no_speech_threshold}"
        )


def validate_conditioning_config(conditioning_cfg: ConditioningConfig) -> None:
    """Validate signal conditioning settings.

    Raises:
        ConfigError: If conditioning configuration is invalid
    """
    if conditioning_cfg.target_sample_rate != 16000:
        raise ConfigError(
            f"target_sample_rate must be 16000, got {conditioning_cfg.target_sample_rate}"
        )

    if not 0.0 < conditioning_cfg.normalize_peak <= 1.0:
        raise ConfigError(
            f"normalize_peak must be within (0, 1], got {conditioning_cfg.normalize_peak}"
        )

    if not 0.0 < conditioning_cfg.highpass_alpha < 1.0:
        raise ConfigError(
            f"highpass_alpha must be within (0, 1), got {conditioning_cfg.highpass_alpha}"
        )


def validate_quality_config(quality_cfg: QualityConfig) -> None:
    """Validate quality gate thresholds.

    Raises:
        ConfigError: If a threshold is negative or a range is inverted
    """
    for name in (
        "silence_rms_threshold",
        "silence_peak_threshold",
        "segment_min_chars",
        "segment_min_words",
        "min_text_chars",
        "min_text_words",
        "entropy_min_length",
        "speech_rate_min_duration",
    ):
        value = getattr(quality_cfg, name)
        if value < 0:
            raise ConfigError(f"quality.{name} must be non-negative, got {value}")

    if quality_cfg.entropy_min > quality_cfg.entropy_max:
        raise ConfigError(
            f"entropy_min ({quality_cfg.entropy_min}) exceeds entropy_max ({quality_cfg.entropy_max})"
        )

    if quality_cfg.speech_rate_min > quality_cfg.speech_rate_max:
        raise ConfigError(
            f"speech_rate_min ({quality_cfg.speech_rate_min}) exceeds "
            f"speech_rate_max ({quality_cfg.speech_rate_max})"
        )

    if not 0.0 < quality_cfg.repetition_word_share <= 1.0:
        raise ConfigError(
            f"repetition_word_share must be within (0, 1], got {quality_cfg.repetition_word_share}"
        )


def validate_transcription_config(transcription_cfg: TranscriptionConfig) -> None:
    """Validate request policy.

    Raises:
        ConfigError: If timeout is negative or the worker count is not positive
    """
    if transcription_cfg.timeout < 0:
        raise ConfigError(
            f"transcription.timeout must be non-negative, got {transcription_cfg.timeout}"
        )

    if transcription_cfg.max_workers < 1:
        raise ConfigError(
            f"transcription.max_workers must be at least 1, got {transcription_cfg.max_workers}"
        )


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().

    Raises:
        ConfigError: If config cannot be loaded or validated
    """
    return Config.from_toml(path, env=env)
