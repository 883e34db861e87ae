"""
Tests for configuration validation and defaults.

Tests cover:
- StreamConfig.from_settings() - all sections
- Defaults class values
- ConfigValidationError on invalid values
- String log level coercion ("DEBUG" -> 4)
- Environment overrides for credentials and RPM
- Settings properties
"""
import os
from unittest.mock import patch

import pytest

from tts_stream.core.config import (
    ConfigValidationError,
    Defaults,
    Settings,
    StreamConfig,
    load_settings,
    parse_credentials,
)


class TestDefaults:
    """Tests for Defaults class values."""

    def test_segmenting_defaults(self):
        assert Defaults.SEGMENT_MAX_CHARS == 400
        assert Defaults.SEGMENT_CONTEXT_CHARS == 200

    def test_rate_limit_defaults(self):
        """Nine requests per credential per minute, as the free tier allows."""
        assert Defaults.RATE_LIMIT_RPM == 9
        assert Defaults.RATE_LIMIT_WINDOW_S == 60.0
        assert Defaults.RATE_LIMIT_SAFETY_MARGIN_S == 0.5

    def test_retry_defaults(self):
        assert Defaults.RETRY_MAX_ATTEMPTS == 5
        assert Defaults.RETRY_RATE_LIMIT_FLOOR_S == 10.0
        assert Defaults.RETRY_BACKOFF_BASE_S == 1.0

    def test_playback_defaults(self):
        assert Defaults.PLAYBACK_SAMPLE_RATE == 24000
        assert Defaults.PLAYBACK_OUTPUT == "silent"
        assert Defaults.PIPELINE_LOOKAHEAD == 3

    def test_endpoint_defaults(self):
        assert Defaults.ENDPOINT_MODEL == "gemini-2.5-flash-preview-tts"
        assert Defaults.ENDPOINT_BASE_URL.startswith("https://")


class TestStreamConfigFromSettings:
    """Tests for StreamConfig.from_settings()."""

    def test_empty_settings_use_defaults(self):
        """Missing sections fall back to Defaults."""
        config = StreamConfig.from_settings(Settings(raw={}))

        assert config.segmenting.max_chars == Defaults.SEGMENT_MAX_CHARS
        assert config.rate_limit.requests_per_minute == Defaults.RATE_LIMIT_RPM
        assert config.retry.max_attempts == Defaults.RETRY_MAX_ATTEMPTS
        assert config.playback.sample_rate == Defaults.PLAYBACK_SAMPLE_RATE
        assert config.pipeline.lookahead == Defaults.PIPELINE_LOOKAHEAD
        assert config.voice.voice == "Puck"
        assert config.logging.level == 2

    def test_custom_sections(self):
        raw = {
            "segmenting": {"max_chars": 250, "context_chars": 0},
            "rate_limit": {"requests_per_minute": 15, "window_s": 30},
            "retry": {"max_attempts": 2, "jitter_s": 0},
            "playback": {"output": "DEVICE", "safety_lead_s": 0.2},
            "pipeline": {"lookahead": 5, "keep_export_audio": False},
            "endpoint": {"base_url": "http://localhost:9000/v1/", "timeout_s": 5},
            "voice": {"voice": "Kore", "language": "hi", "style": "Whisper"},
        }
        config = StreamConfig.from_settings(Settings(raw=raw))

        assert config.segmenting.max_chars == 250
        assert config.segmenting.context_chars == 0
        assert config.rate_limit.requests_per_minute == 15
        assert config.rate_limit.window_s == 30.0
        assert config.retry.max_attempts == 2
        assert config.retry.jitter_s == 0.0
        assert config.playback.output == "device"
        assert config.pipeline.lookahead == 5
        assert config.pipeline.keep_export_audio is False
        assert config.endpoint.base_url == "http://localhost:9000/v1"
        assert config.voice.voice == "Kore"
        assert config.voice.style == "Whisper"

    def test_string_log_level(self):
        config = StreamConfig.from_settings(Settings(raw={"logging": {"level": "DEBUG"}}))
        assert config.logging.level == 4

    def test_null_section_uses_defaults(self):
        """A YAML section present but empty (None) is treated as missing."""
        config = StreamConfig.from_settings(Settings(raw={"retry": None}))
        assert config.retry.max_attempts == Defaults.RETRY_MAX_ATTEMPTS


class TestValidation:
    """ConfigValidationError on bad values."""

    @pytest.mark.parametrize("rpm", [0, 101, -3])
    def test_rpm_out_of_range(self, rpm):
        with pytest.raises(ConfigValidationError, match="requests_per_minute"):
            StreamConfig.from_settings(Settings(raw={"rate_limit": {"requests_per_minute": rpm}}))

    def test_zero_max_chars_rejected(self):
        with pytest.raises(ConfigValidationError, match="max_chars"):
            StreamConfig.from_settings(Settings(raw={"segmenting": {"max_chars": 0}}))

    def test_negative_wait_rejected(self):
        with pytest.raises(ConfigValidationError, match="rate_limit_floor_s"):
            StreamConfig.from_settings(Settings(raw={"retry": {"rate_limit_floor_s": -1}}))

    def test_unknown_output_rejected(self):
        with pytest.raises(ConfigValidationError, match="playback.output"):
            StreamConfig.from_settings(Settings(raw={"playback": {"output": "speakers"}}))

    def test_zero_lookahead_rejected(self):
        with pytest.raises(ConfigValidationError, match="lookahead"):
            StreamConfig.from_settings(Settings(raw={"pipeline": {"lookahead": 0}}))

    def test_log_level_range(self):
        with pytest.raises(ConfigValidationError, match="logging.level"):
            StreamConfig.from_settings(Settings(raw={"logging": {"level": 7}}))

    def test_validation_error_is_value_error(self):
        assert issubclass(ConfigValidationError, ValueError)


class TestSettings:
    """Settings properties and loading."""

    def test_credentials_cleaned(self):
        settings = Settings(raw={"credentials": {"keys": [" a ", "", "b", "a"]}})
        assert settings.credentials == ["a", "b"]

    def test_credentials_from_comma_string(self):
        settings = Settings(raw={"credentials": {"keys": "k1, k2,,k3"}})
        assert settings.credentials == ["k1", "k2", "k3"]

    def test_parse_credentials_keeps_order(self):
        assert parse_credentials(["z", "y", "z", "x"]) == ["z", "y", "x"]

    def test_missing_file_required(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "nope.yaml"))

    def test_missing_file_optional(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_settings(str(tmp_path / "nope.yaml"), required=False)
        assert settings.raw == {}

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("rate_limit:\n  requests_per_minute: 4\nvoice:\n  voice: Aoede\n", encoding="utf-8")
        with patch.dict(os.environ, {}, clear=True):
            settings = load_settings(str(path))
        assert settings.default_voice == "Aoede"
        assert settings.stream_config().rate_limit.requests_per_minute == 4

    def test_repository_settings_file_is_valid(self):
        """The shipped config/settings.yaml passes validation."""
        from pathlib import Path
        path = Path(__file__).parent.parent / "config" / "settings.yaml"
        with patch.dict(os.environ, {}, clear=True):
            config = load_settings(str(path)).stream_config()
        assert config.rate_limit.requests_per_minute == 9
        assert config.playback.sample_rate == 24000


class TestEnvironmentOverrides:
    """Environment variables override the settings file."""

    def test_api_keys_env(self, tmp_path):
        with patch.dict(os.environ, {"TTS_STREAM_API_KEYS": "k1,k2, k3"}, clear=True):
            settings = load_settings(str(tmp_path / "none.yaml"), required=False)
        assert settings.credentials == ["k1", "k2", "k3"]

    def test_gemini_key_only_when_no_keys(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("credentials:\n  keys: [file-key]\n", encoding="utf-8")
        with patch.dict(os.environ, {"GEMINI_API_KEY": "env-key"}, clear=True):
            assert load_settings(str(path)).credentials == ["file-key"]
            assert load_settings(str(tmp_path / "none.yaml"), required=False).credentials == ["env-key"]

    def test_rpm_env(self, tmp_path):
        with patch.dict(os.environ, {"TTS_STREAM_RPM": "20"}, clear=True):
            settings = load_settings(str(tmp_path / "none.yaml"), required=False)
        assert settings.stream_config().rate_limit.requests_per_minute == 20
