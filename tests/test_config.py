"""Tests for config module."""

import tempfile
from pathlib import Path

import pytest

from utterance_stt.config import (
    CONFIG_ENV_VAR,
    ConditioningConfig,
    Config,
    ConfigError,
    ModelConfig,
    QualityConfig,
    RecognitionConfig,
    TranscriptionConfig,
    load_config,
    validate_conditioning_config,
    validate_model_config,
    validate_quality_config,
    validate_recognition_config,
    validate_transcription_config,
)


@pytest.fixture
def tmp_config_file():
    """Create a temporary TOML config file for testing."""

    def _create(content: str) -> Path:
        with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
            f.write(content)
            return Path(f.name)

    return _create


@pytest.fixture
def isolated_search_path(tmp_path, monkeypatch):
    """Run with an empty working directory and home so no real config is found."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    return tmp_path


@pytest.fixture
def full_config_content():
    """Full configuration with all sections."""
    return """
[model]
backend = "vosk"
name = "vosk-model-en-us-0.22"
device = "cpu"
compute_type = "int8"
model_directory = "/opt/models"
beam_size = 3

[recognition]
language = "de"
no_speech_threshold = 0.5
window_seconds = 0.25

[conditioning]
normalize_peak = 0.9
highpass_alpha = 0.97

[quality]
speech_rate_max = 6.0
entropy_min = 1.5

[transcription]
timeout = 30.0
max_workers = 2

[general]
verbose = true
"""


class TestConfigLoading:
    """Tests for configuration loading."""

    def test_load_full_config(self, tmp_config_file, full_config_content):
        """Test loading a configuration with every section."""
        config_path = tmp_config_file(full_config_content)
        try:
            cfg = load_config(config_path, env={})

            assert cfg.model.backend == "vosk"
            assert cfg.model.name == "vosk-model-en-us-0.22"
            assert cfg.model.model_directory == "/opt/models"
            assert cfg.model.beam_size == 3
            assert cfg.recognition.language == "de"
            assert cfg.recognition.no_speech_threshold == 0.5
            assert cfg.recognition.window_seconds == 0.25
            assert cfg.conditioning.normalize_peak == 0.9
            assert cfg.conditioning.highpass_alpha == 0.97
            assert cfg.quality.speech_rate_max == 6.0
            assert cfg.quality.entropy_min == 1.5
            assert cfg.transcription.timeout == 30.0
            assert cfg.transcription.max_workers == 2
            assert cfg.general.verbose is True
        finally:
            config_path.unlink()

    def test_partial_config_keeps_defaults(self, tmp_config_file):
        """Test omitted sections and keys keep their defaults."""
        config_path = tmp_config_file('[model]\nname = "tiny"\n')
        try:
            cfg = load_config(config_path, env={})

            assert cfg.model.name == "tiny"
            assert cfg.model.backend == "faster_whisper"
            assert cfg.recognition.language == "en"
            assert cfg.quality.silence_rms_threshold == 0.001
            assert cfg.transcription.timeout == 60.0
        finally:
            config_path.unlink()

    def test_no_config_uses_defaults(self, isolated_search_path):
        """Test built-in defaults apply when no config file exists."""
        cfg = load_config(env={})
        assert cfg == Config()

    def test_explicit_missing_file(self, tmp_path):
        """Test an explicit path that does not exist is an error."""
        with pytest.raises(ConfigError, match="Config file not found"):
            load_config(tmp_path / "missing.toml", env={})

    def test_env_var_path(self, tmp_config_file, isolated_search_path):
        """Test the environment variable points at a config file."""
        config_path = tmp_config_file('[recognition]\nlanguage = "fr"\n')
        try:
            cfg = load_config(env={CONFIG_ENV_VAR: str(config_path)})
            assert cfg.recognition.language == "fr"
        finally:
            config_path.unlink()

    def test_env_var_missing_file(self, isolated_search_path):
        """Test an environment variable naming a missing file is an error."""
        with pytest.raises(ConfigError, match=CONFIG_ENV_VAR):
            load_config(env={CONFIG_ENV_VAR: str(isolated_search_path / "nope.toml")})

    def test_working_directory_config(self, isolated_search_path):
        """Test ./utterance_stt.toml is found in the working directory."""
        (isolated_search_path / "utterance_stt.toml").write_text('[model]\nname = "base"\n')
        assert load_config(env={}).model.name == "base"

    def test_home_config(self, isolated_search_path):
        """Test ~/.config/utterance_stt.toml is used as a fallback."""
        config_dir = isolated_search_path / "home" / ".config"
        config_dir.mkdir(parents=True)
        (config_dir / "utterance_stt.toml").write_text('[model]\nname = "medium"\n')
        assert load_config(env={}).model.name == "medium"

    def test_invalid_toml(self, tmp_config_file):
        """Test malformed TOML is reported as ConfigError."""
        config_path = tmp_config_file("[model\nname = ")
        try:
            with pytest.raises(ConfigError, match="Failed to parse config file"):
                load_config(config_path, env={})
        finally:
            config_path.unlink()

    def test_unknown_key(self, tmp_config_file):
        """Test an unknown key inside a section is rejected."""
        config_path = tmp_config_file('[model]\nflavour = "vanilla"\n')
        try:
            with pytest.raises(ConfigError, match="Invalid configuration values"):
                load_config(config_path, env={})
        finally:
            config_path.unlink()

    def test_section_not_table(self, tmp_config_file):
        """Test a scalar where a section belongs is rejected."""
        config_path = tmp_config_file('model = "small"\n')
        try:
            with pytest.raises(ConfigError, match=r"Section \[model\] must be a table"):
                load_config(config_path, env={})
        finally:
            config_path.unlink()

    def test_unknown_section_ignored(self, tmp_config_file, caplog):
        """Test unknown sections are ignored with a warning."""
        config_path = tmp_config_file('[injector]\nbackend = "wtype"\n')
        try:
            cfg = load_config(config_path, env={})
            assert cfg.model.name == "small"
            assert "injector" in caplog.text
        finally:
            config_path.unlink()

    def test_invalid_value_in_file(self, tmp_config_file):
        """Test validation runs on loaded values."""
        config_path = tmp_config_file('[model]\nbackend = "deepspeech"\n')
        try:
            with pytest.raises(ConfigError, match="Invalid backend"):
                load_config(config_path, env={})
        finally:
            config_path.unlink()

    def test_negative_timeout(self, tmp_config_file):
        """Test a negative timeout is rejected."""
        config_path = tmp_config_file("[transcription]\ntimeout = -1.0\n")
        try:
            with pytest.raises(ConfigError, match="timeout"):
                load_config(config_path, env={})
        finally:
            config_path.unlink()

    def test_wrongly_typed_value(self, tmp_config_file):
        """Test a value of the wrong type surfaces as ConfigError."""
        config_path = tmp_config_file('[model]\nbeam_size = "5"\n')
        try:
            with pytest.raises(ConfigError, match="Validation failed"):
                load_config(config_path, env={})
        finally:
            config_path.unlink()


class TestModelValidation:
    """Tests for model configuration validation."""

    def test_defaults_valid(self):
        """Test default model config passes."""
        validate_model_config(ModelConfig())

    @pytest.mark.parametrize(
        "field_name,value,message",
        [
            ("backend", "deepspeech", "Invalid backend"),
            ("device", "tpu", "Invalid device"),
            ("compute_type", "int4", "Invalid compute_type"),
            ("name", "", "model.name"),
            ("beam_size", 0, "beam_size"),
        ],
    )
    def test_invalid_values(self, field_name, value, message):
        """Test each invalid model field is reported."""
        cfg = ModelConfig()
        setattr(cfg, field_name, value)
        with pytest.raises(ConfigError, match=message):
            validate_model_config(cfg)


class TestRecognitionValidation:
    """Tests for decoding parameter validation."""

    def test_defaults_valid(self):
        """Test default recognition config passes."""
        validate_recognition_config(RecognitionConfig())

    @pytest.mark.parametrize("language", ["", "auto"])
    def test_language_must_be_fixed(self, language):
        """Test language auto-detection is not allowed."""
        with pytest.raises(ConfigError, match="fixed language"):
            validate_recognition_config(RecognitionConfig(language=language))

    def test_negative_temperature(self):
        """Test temperature below zero is rejected."""
        with pytest.raises(ConfigError, match="temperature"):
            validate_recognition_config(RecognitionConfig(temperature=-0.1))

    def test_window_must_be_positive(self):
        """Test a zero streaming window is rejected."""
        with pytest.raises(ConfigError, match="window_seconds"):
            validate_recognition_config(RecognitionConfig(window_seconds=0))

    def test_no_speech_threshold_range(self):
        """Test a probability threshold above one is rejected."""
        with pytest.raises(ConfigError, match="no_speech_threshold"):
            validate_recognition_config(RecognitionConfig(no_speech_threshold=1.5))


class TestConditioningValidation:
    """Tests for conditioning validation."""

    def test_target_rate_fixed(self):
        """Test only 16 kHz is accepted as the target rate."""
        with pytest.raises(ConfigError, match="16000"):
            validate_conditioning_config(ConditioningConfig(target_sample_rate=22050))

    def test_normalize_peak_range(self):
        """Test a gain target above full scale is rejected."""
        with pytest.raises(ConfigError, match="normalize_peak"):
            validate_conditioning_config(ConditioningConfig(normalize_peak=1.2))

    def test_highpass_alpha_range(self):
        """Test alpha of one would never remove DC and is rejected."""
        with pytest.raises(ConfigError, match="highpass_alpha"):
            validate_conditioning_config(ConditioningConfig(highpass_alpha=1.0))


class TestQualityValidation:
    """Tests for quality threshold validation."""

    def test_defaults_valid(self):
        """Test default thresholds pass."""
        validate_quality_config(QualityConfig())

    def test_negative_threshold(self):
        """Test negative thresholds are rejected."""
        with pytest.raises(ConfigError, match="silence_rms_threshold"):
            validate_quality_config(QualityConfig(silence_rms_threshold=-0.1))

    def test_inverted_entropy_range(self):
        """Test entropy_min above entropy_max is rejected."""
        with pytest.raises(ConfigError, match="entropy_min"):
            validate_quality_config(QualityConfig(entropy_min=6.0))

    def test_inverted_speech_rate_range(self):
        """Test speech_rate_min above speech_rate_max is rejected."""
        with pytest.raises(ConfigError, match="speech_rate_min"):
            validate_quality_config(QualityConfig(speech_rate_min=9.0))

    def test_word_share_range(self):
        """Test a zero word share is rejected."""
        with pytest.raises(ConfigError, match="repetition_word_share"):
            validate_quality_config(QualityConfig(repetition_word_share=0.0))


class TestTranscriptionValidation:
    """Tests for request policy validation."""

    def test_defaults_valid(self):
        """Test the default policy uses a single worker."""
        cfg = TranscriptionConfig()
        validate_transcription_config(cfg)
        assert cfg.max_workers == 1

    def test_zero_workers(self):
        """Test a worker count below one is rejected."""
        with pytest.raises(ConfigError, match="max_workers"):
            validate_transcription_config(TranscriptionConfig(max_workers=0))

    def test_zero_timeout_allowed(self):
        """Test a zero timeout means no limit and passes."""
        validate_transcription_config(TranscriptionConfig(timeout=0.0))
