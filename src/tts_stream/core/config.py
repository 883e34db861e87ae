"""
Configuration Management for tts-stream.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration sections
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (TTS_STREAM_API_KEYS, TTS_STREAM_RPM, ...)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    credentials:
      keys: []          # prefer TTS_STREAM_API_KEYS in the environment

    rate_limit:
      requests_per_minute: 9

    pipeline:
      lookahead: 3

    logging:
      level: 2  # NORMAL
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml


class ConfigValidationError(ValueError):
    """Raised when a configuration value is out of bounds or malformed."""


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Segmenting: Text splitting parameters
        - Rate limit: Per-credential sliding window
        - Retry: Backoff and cooldown policy
        - Playback: Audio clock and scheduling
        - Pipeline: Fetch-ahead window
        - Endpoint: Remote synthesis service
        - Voice: Default voice parameters
        - Logging: Log level
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Segmenting
    # ─────────────────────────────────────────────────────────────────────────
    SEGMENT_MAX_CHARS = 400             # Upper bound on characters per request
    SEGMENT_CONTEXT_CHARS = 200         # Previous-segment tail sent as context

    # ─────────────────────────────────────────────────────────────────────────
    # Rate Limit (per credential)
    # ─────────────────────────────────────────────────────────────────────────
    RATE_LIMIT_RPM = 9                  # Requests per window per credential
    RATE_LIMIT_RPM_MIN = 1
    RATE_LIMIT_RPM_MAX = 100
    RATE_LIMIT_WINDOW_S = 60.0          # Sliding window length
    RATE_LIMIT_SAFETY_MARGIN_S = 0.5    # Added to computed waits

    # ─────────────────────────────────────────────────────────────────────────
    # Retry Policy
    # ─────────────────────────────────────────────────────────────────────────
    RETRY_MAX_ATTEMPTS = 5              # Attempts for transient failures
    RETRY_BACKOFF_BASE_S = 1.0          # base * 2**attempt
    RETRY_RATE_LIMIT_FLOOR_S = 10.0     # Used when no retry hint is given
    RETRY_RATE_LIMIT_PAD_S = 1.0        # Fixed pad on suggested waits
    RETRY_RATE_LIMIT_PAD_RATIO = 0.1    # Proportional pad on suggested waits
    RETRY_JITTER_S = 1.0                # Uniform random jitter upper bound
    RETRY_MAX_RATE_LIMIT_RETRIES = 8    # Consecutive 429s before giving up
    RETRY_COUNTDOWN_TICK_S = 1.0        # Countdown notification interval

    # ─────────────────────────────────────────────────────────────────────────
    # Playback
    # ─────────────────────────────────────────────────────────────────────────
    PLAYBACK_SAMPLE_RATE = 24000        # Endpoint emits 24 kHz mono PCM16
    PLAYBACK_SAFETY_LEAD_S = 0.1        # Minimum distance from "now" for a start
    PLAYBACK_OUTPUT = "silent"          # silent | device

    # ─────────────────────────────────────────────────────────────────────────
    # Pipeline
    # ─────────────────────────────────────────────────────────────────────────
    PIPELINE_LOOKAHEAD = 3              # Segments fetched ahead of playback
    PIPELINE_KEEP_EXPORT_AUDIO = True   # Keep raw PCM for WAV export

    # ─────────────────────────────────────────────────────────────────────────
    # Endpoint
    # ─────────────────────────────────────────────────────────────────────────
    ENDPOINT_MODEL = "gemini-2.5-flash-preview-tts"
    ENDPOINT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    ENDPOINT_TIMEOUT_S = 60.0

    # ─────────────────────────────────────────────────────────────────────────
    # Voice Defaults
    # ─────────────────────────────────────────────────────────────────────────
    VOICE_DEFAULT = "Puck"
    VOICE_DEFAULT_LANGUAGE = "en"
    VOICE_DEFAULT_STYLE = ""

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 60     # Characters of segment text in logs
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


@dataclass
class SegmentingConfig:
    """Text segmentation limits."""
    max_chars: int = Defaults.SEGMENT_MAX_CHARS
    context_chars: int = Defaults.SEGMENT_CONTEXT_CHARS


@dataclass
class RateLimitConfig:
    """
    Per-credential sliding-window limit.

    Each credential may send ``requests_per_minute`` requests in any
    trailing ``window_s`` seconds.
    """
    requests_per_minute: int = Defaults.RATE_LIMIT_RPM
    window_s: float = Defaults.RATE_LIMIT_WINDOW_S
    safety_margin_s: float = Defaults.RATE_LIMIT_SAFETY_MARGIN_S


@dataclass
class RetryConfig:
    """Backoff and cooldown policy for the synthesis client."""
    max_attempts: int = Defaults.RETRY_MAX_ATTEMPTS
    backoff_base_s: float = Defaults.RETRY_BACKOFF_BASE_S
    rate_limit_floor_s: float = Defaults.RETRY_RATE_LIMIT_FLOOR_S
    rate_limit_pad_s: float = Defaults.RETRY_RATE_LIMIT_PAD_S
    rate_limit_pad_ratio: float = Defaults.RETRY_RATE_LIMIT_PAD_RATIO
    jitter_s: float = Defaults.RETRY_JITTER_S
    max_rate_limit_retries: int = Defaults.RETRY_MAX_RATE_LIMIT_RETRIES
    countdown_tick_s: float = Defaults.RETRY_COUNTDOWN_TICK_S


@dataclass
class PlaybackConfig:
    """Audio clock and scheduling."""
    sample_rate: int = Defaults.PLAYBACK_SAMPLE_RATE
    safety_lead_s: float = Defaults.PLAYBACK_SAFETY_LEAD_S
    output: str = Defaults.PLAYBACK_OUTPUT


@dataclass
class PipelineConfig:
    """Fetch-ahead behaviour of the pipeline coordinator."""
    lookahead: int = Defaults.PIPELINE_LOOKAHEAD
    keep_export_audio: bool = Defaults.PIPELINE_KEEP_EXPORT_AUDIO


@dataclass
class EndpointConfig:
    """Remote speech synthesis endpoint."""
    model: str = Defaults.ENDPOINT_MODEL
    base_url: str = Defaults.ENDPOINT_BASE_URL
    timeout_s: float = Defaults.ENDPOINT_TIMEOUT_S


@dataclass
class VoiceConfig:
    """Default voice parameters for new sessions."""
    voice: str = Defaults.VOICE_DEFAULT
    language: str = Defaults.VOICE_DEFAULT_LANGUAGE
    style: str = Defaults.VOICE_DEFAULT_STYLE


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, session failures
        2 = NORMAL: Session lifecycle, segment progress (default)
        3 = VERBOSE: Per-request timing, scheduling
        4 = DEBUG: Internal state
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class StreamConfig:
    """
    Validated configuration for a streaming session.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = StreamConfig.from_settings(settings)
        print(config.rate_limit.requests_per_minute)
    """
    segmenting: SegmentingConfig = field(default_factory=SegmentingConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "StreamConfig":
        """
        Build a StreamConfig from raw Settings, applying defaults and
        validating every value.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Segmenting
        # ─────────────────────────────────────────────────────────────────────
        seg_raw = raw.get("segmenting", {}) or {}
        segmenting = SegmentingConfig(
            max_chars=int(seg_raw.get("max_chars", Defaults.SEGMENT_MAX_CHARS)),
            context_chars=int(seg_raw.get("context_chars", Defaults.SEGMENT_CONTEXT_CHARS)),
        )
        cls._validate_positive("segmenting.max_chars", segmenting.max_chars)
        cls._validate_non_negative("segmenting.context_chars", segmenting.context_chars)

        # ─────────────────────────────────────────────────────────────────────
        # Rate limit
        # ─────────────────────────────────────────────────────────────────────
        rl_raw = raw.get("rate_limit", {}) or {}
        rate_limit = RateLimitConfig(
            requests_per_minute=int(rl_raw.get("requests_per_minute", Defaults.RATE_LIMIT_RPM)),
            window_s=float(rl_raw.get("window_s", Defaults.RATE_LIMIT_WINDOW_S)),
            safety_margin_s=float(rl_raw.get("safety_margin_s", Defaults.RATE_LIMIT_SAFETY_MARGIN_S)),
        )
        cls._validate_range(
            "rate_limit.requests_per_minute",
            rate_limit.requests_per_minute,
            Defaults.RATE_LIMIT_RPM_MIN,
            Defaults.RATE_LIMIT_RPM_MAX,
        )
        cls._validate_positive("rate_limit.window_s", rate_limit.window_s)
        cls._validate_non_negative("rate_limit.safety_margin_s", rate_limit.safety_margin_s)

        # ─────────────────────────────────────────────────────────────────────
        # Retry
        # ─────────────────────────────────────────────────────────────────────
        retry_raw = raw.get("retry", {}) or {}
        retry = RetryConfig(
            max_attempts=int(retry_raw.get("max_attempts", Defaults.RETRY_MAX_ATTEMPTS)),
            backoff_base_s=float(retry_raw.get("backoff_base_s", Defaults.RETRY_BACKOFF_BASE_S)),
            rate_limit_floor_s=float(retry_raw.get("rate_limit_floor_s", Defaults.RETRY_RATE_LIMIT_FLOOR_S)),
            rate_limit_pad_s=float(retry_raw.get("rate_limit_pad_s", Defaults.RETRY_RATE_LIMIT_PAD_S)),
            rate_limit_pad_ratio=float(retry_raw.get("rate_limit_pad_ratio", Defaults.RETRY_RATE_LIMIT_PAD_RATIO)),
            jitter_s=float(retry_raw.get("jitter_s", Defaults.RETRY_JITTER_S)),
            max_rate_limit_retries=int(
                retry_raw.get("max_rate_limit_retries", Defaults.RETRY_MAX_RATE_LIMIT_RETRIES)
            ),
            countdown_tick_s=float(retry_raw.get("countdown_tick_s", Defaults.RETRY_COUNTDOWN_TICK_S)),
        )
        cls._validate_positive("retry.max_attempts", retry.max_attempts)
        cls._validate_non_negative("retry.backoff_base_s", retry.backoff_base_s)
        cls._validate_non_negative("retry.rate_limit_floor_s", retry.rate_limit_floor_s)
        cls._validate_non_negative("retry.rate_limit_pad_s", retry.rate_limit_pad_s)
        cls._validate_non_negative("retry.rate_limit_pad_ratio", retry.rate_limit_pad_ratio)
        cls._validate_non_negative("retry.jitter_s", retry.jitter_s)
        cls._validate_non_negative("retry.max_rate_limit_retries", retry.max_rate_limit_retries)
        cls._validate_positive("retry.countdown_tick_s", retry.countdown_tick_s)

        # ─────────────────────────────────────────────────────────────────────
        # Playback
        # ─────────────────────────────────────────────────────────────────────
        pb_raw = raw.get("playback", {}) or {}
        playback = PlaybackConfig(
            sample_rate=int(pb_raw.get("sample_rate", Defaults.PLAYBACK_SAMPLE_RATE)),
            safety_lead_s=float(pb_raw.get("safety_lead_s", Defaults.PLAYBACK_SAFETY_LEAD_S)),
            output=str(pb_raw.get("output", Defaults.PLAYBACK_OUTPUT)).lower(),
        )
        cls._validate_positive("playback.sample_rate", playback.sample_rate)
        cls._validate_non_negative("playback.safety_lead_s", playback.safety_lead_s)
        if playback.output not in ("silent", "device"):
            raise ConfigValidationError(
                f"playback.output must be 'silent' or 'device', got {playback.output!r}"
            )

        # ─────────────────────────────────────────────────────────────────────
        # Pipeline
        # ─────────────────────────────────────────────────────────────────────
        pipe_raw = raw.get("pipeline", {}) or {}
        pipeline = PipelineConfig(
            lookahead=int(pipe_raw.get("lookahead", Defaults.PIPELINE_LOOKAHEAD)),
            keep_export_audio=bool(pipe_raw.get("keep_export_audio", Defaults.PIPELINE_KEEP_EXPORT_AUDIO)),
        )
        cls._validate_positive("pipeline.lookahead", pipeline.lookahead)

        # ─────────────────────────────────────────────────────────────────────
        # Endpoint
        # ─────────────────────────────────────────────────────────────────────
        ep_raw = raw.get("endpoint", {}) or {}
        endpoint = EndpointConfig(
            model=str(ep_raw.get("model", Defaults.ENDPOINT_MODEL)),
            base_url=str(ep_raw.get("base_url", Defaults.ENDPOINT_BASE_URL)).rstrip("/"),
            timeout_s=float(ep_raw.get("timeout_s", Defaults.ENDPOINT_TIMEOUT_S)),
        )
        cls._validate_positive("endpoint.timeout_s", endpoint.timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Voice
        # ─────────────────────────────────────────────────────────────────────
        voice_raw = raw.get("voice", {}) or {}
        voice = VoiceConfig(
            voice=str(voice_raw.get("voice", Defaults.VOICE_DEFAULT)),
            language=str(voice_raw.get("language", Defaults.VOICE_DEFAULT_LANGUAGE)),
            style=str(voice_raw.get("style", Defaults.VOICE_DEFAULT_STYLE) or ""),
        )

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)
        if isinstance(log_level_raw, str):
            from tts_stream.core.logging.levels import coerce_level
            log_level = int(coerce_level(log_level_raw))
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            segmenting=segmenting,
            rate_limit=rate_limit,
            retry=retry,
            playback=playback,
            pipeline=pipeline,
            endpoint=endpoint,
            voice=voice,
            logging=logging_cfg,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation; use
    ``stream_config()`` for the validated, typed view.
    """
    raw: Dict[str, Any]

    @property
    def credentials(self) -> List[str]:
        """Configured API credentials, blanks and duplicates removed."""
        keys = (self.raw.get("credentials", {}) or {}).get("keys", []) or []
        if isinstance(keys, str):
            keys = keys.split(",")
        return parse_credentials(keys)

    @property
    def default_voice(self) -> str:
        return (self.raw.get("voice", {}) or {}).get("voice", Defaults.VOICE_DEFAULT)

    @property
    def sample_rate(self) -> int:
        return int((self.raw.get("playback", {}) or {}).get("sample_rate", Defaults.PLAYBACK_SAMPLE_RATE))

    def stream_config(self) -> StreamConfig:
        """
        Validated configuration for these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return StreamConfig.from_settings(self)


def parse_credentials(values: Any) -> List[str]:
    """Strip, drop empties and de-duplicate credentials, keeping order."""
    seen: List[str] = []
    for value in values or []:
        key = str(value).strip()
        if key and key not in seen:
            seen.append(key)
    return seen


def load_settings(path: str = "config/settings.yaml", required: bool = True) -> Settings:
    """
    Load settings from a YAML configuration file.

    Environment variable overrides:
        - TTS_STREAM_API_KEYS: Comma separated credentials (replaces credentials.keys)
        - GEMINI_API_KEY: Single credential, used when no other is configured
        - TTS_STREAM_RPM: Override rate_limit.requests_per_minute

    Args:
        path: Path to the YAML configuration file.
        required: When False, a missing file yields default settings.

    Raises:
        FileNotFoundError: If the file is missing and ``required`` is True.
    """
    p = Path(path)
    raw: Dict[str, Any] = {}
    if p.exists():
        with p.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    elif required:
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    env_keys = os.getenv("TTS_STREAM_API_KEYS")
    if env_keys:
        raw.setdefault("credentials", {})["keys"] = parse_credentials(env_keys.split(","))

    gemini_key = os.getenv("GEMINI_API_KEY")
    if gemini_key and not (raw.get("credentials", {}) or {}).get("keys"):
        raw.setdefault("credentials", {})["keys"] = [gemini_key.strip()]

    rpm = os.getenv("TTS_STREAM_RPM")
    if rpm:
        raw.setdefault("rate_limit", {})["requests_per_minute"] = int(rpm)

    return Settings(raw=raw)
