#!/usr/bin/env python3
from __future__ import annotations

"""Centralized runtime configuration for the batchtts pipeline.

This module maps environment variables into typed dataclasses used by the
chunker, synthesis, codec and merge components.
"""

import math
import os
from dataclasses import dataclass


PROCESSING_MODES = ("huggingface", "local")
CODEC_BACKENDS = ("ffmpeg", "pydub")
OUTPUT_FORMATS = ("wav", "mp3")
SUPPORTED_MP3_BITRATES = (64, 128)


def _env_str(name: str, default: str) -> str:
    """Read string env var with trim + default fallback."""
    v = os.environ.get(name)
    return default if v is None else str(v).strip()


def _env_int(name: str, default: int) -> int:
    """Read integer env var with defensive fallback."""
    v = os.environ.get(name)
    if v is None or str(v).strip() == "":
        return default
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    """Read finite float env var with defensive fallback."""
    v = os.environ.get(name)
    if v is None or str(v).strip() == "":
        return default
    try:
        value = float(str(v).strip())
        if not math.isfinite(value):
            return default
        return value
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: bool) -> bool:
    """Read boolean env var from common truthy literals."""
    v = os.environ.get(name)
    if v is None or str(v).strip() == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    """Read lower-cased env var restricted to known values."""
    value = _env_str(name, default).lower()
    return value if value in choices else default


def normalize_bitrate(value: int) -> int:
    """Snap a requested MP3 bitrate to the closest supported value."""
    requested = int(value)
    return min(SUPPORTED_MP3_BITRATES, key=lambda candidate: (abs(candidate - requested), -candidate))


@dataclass(frozen=True)
class LoggingConfig:
    """Logging behavior used by `Logger`."""

    level: str
    heartbeat_seconds: int
    debug_events: bool
    include_event_ids: bool

    @staticmethod
    def from_env() -> "LoggingConfig":
        """Build logging config from environment."""
        return LoggingConfig(
            level=_env_str("LOG_LEVEL", "INFO").upper(),
            heartbeat_seconds=max(1, _env_int("LOG_HEARTBEAT_SECONDS", 15)),
            debug_events=_env_bool("LOG_DEBUG_EVENTS", False),
            include_event_ids=_env_bool("LOG_INCLUDE_EVENT_IDS", True),
        )


@dataclass(frozen=True)
class SynthesisConfig:
    """Speech backend selection and per-chunk synthesis settings."""

    processing_mode: str
    default_voice: str
    max_chunk_chars: int
    hard_split: bool
    pause_between_chunks_ms: int
    local_model_available: bool
    huggingface_api_token: str
    huggingface_api_url: str
    timeout_seconds: int
    retries: int
    retry_backoff_base_ms: int
    retry_backoff_max_ms: int

    @property
    def huggingface_configured(self) -> bool:
        return bool(self.huggingface_api_token and self.huggingface_api_url)

    @staticmethod
    def from_env() -> "SynthesisConfig":
        """Build synthesis config from environment."""
        return SynthesisConfig(
            processing_mode=_env_choice("TTS_PROCESSING_MODE", "huggingface", PROCESSING_MODES),
            default_voice=_env_str("TTS_DEFAULT_VOICE", "af_sky") or "af_sky",
            max_chunk_chars=max(1, _env_int("TTS_MAX_CHUNK_CHARS", 450)),
            hard_split=_env_bool("TTS_HARD_SPLIT", False),
            pause_between_chunks_ms=max(0, _env_int("TTS_PAUSE_BETWEEN_CHUNKS_MS", 0)),
            local_model_available=_env_bool("TTS_LOCAL_MODEL_AVAILABLE", False),
            huggingface_api_token=_env_str("HUGGINGFACE_API_TOKEN", ""),
            huggingface_api_url=_env_str("HUGGINGFACE_TTS_API_URL", "").rstrip("/"),
            timeout_seconds=max(5, _env_int("TTS_TIMEOUT_SECONDS", 60)),
            retries=max(1, _env_int("TTS_RETRIES", 3)),
            retry_backoff_base_ms=max(100, _env_int("TTS_RETRY_BACKOFF_BASE_MS", 800)),
            retry_backoff_max_ms=max(500, _env_int("TTS_RETRY_BACKOFF_MAX_MS", 8000)),
        )


@dataclass(frozen=True)
class CodecConfig:
    """Encoder backend and lossy-format parameters."""

    backend: str
    mp3_bitrate_kbps: int
    mp3_sample_rate: int
    ffmpeg_loglevel: str

    @staticmethod
    def from_env() -> "CodecConfig":
        """Build codec config from environment."""
        return CodecConfig(
            backend=_env_choice("CODEC_BACKEND", "ffmpeg", CODEC_BACKENDS),
            mp3_bitrate_kbps=normalize_bitrate(_env_int("MP3_BITRATE_KBPS", 128)),
            mp3_sample_rate=max(8000, _env_int("MP3_SAMPLE_RATE", 24000)),
            ffmpeg_loglevel=_env_str("FFMPEG_LOGLEVEL", "warning") or "warning",
        )


@dataclass(frozen=True)
class BatchConfig:
    """Output batching, temp-dir and janitor settings."""

    output_format: str
    max_batch_mb: float
    temp_dir: str
    temp_max_age_minutes: int
    janitor_interval_seconds: int
    min_free_disk_mb: int

    @property
    def max_batch_bytes(self) -> int:
        return max(1, int(self.max_batch_mb * 1024 * 1024))

    @staticmethod
    def from_env() -> "BatchConfig":
        """Build batch config from environment."""
        return BatchConfig(
            output_format=_env_choice("OUTPUT_FORMAT", "mp3", OUTPUT_FORMATS),
            max_batch_mb=max(0.001, _env_float("MAX_BATCH_MB", 100.0)),
            temp_dir=_env_str("AUDIO_TEMP_DIR", os.path.join(os.getcwd(), "temp")),
            temp_max_age_minutes=max(1, _env_int("TEMP_MAX_AGE_MINUTES", 30)),
            janitor_interval_seconds=max(0, _env_int("JANITOR_INTERVAL_SECONDS", 0)),
            min_free_disk_mb=max(0, _env_int("MIN_FREE_DISK_MB", 64)),
        )
