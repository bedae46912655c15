#!/usr/bin/env python3
from __future__ import annotations

from typing import Callable, Optional

from .config import SynthesisConfig
from .errors import ERROR_KIND_CONFIG, SpeechBackendError
from .logging_utils import Logger
from .speech_backend import (
    CallableSpeechBackend,
    FallbackSpeechBackend,
    HuggingFaceSpeechBackend,
    SpeechBackend,
    SynthesisResult,
)


def create_speech_backend(
    *,
    config: SynthesisConfig,
    logger: Logger,
    local_generate: Optional[Callable[[str, str], SynthesisResult]] = None,
) -> SpeechBackend:
    """Pick the backend for the configured processing mode.

    In `huggingface` mode a configured local model becomes the fallback when
    the remote call fails.
    """
    mode = str(config.processing_mode or "huggingface").strip().lower()
    local_ready = bool(config.local_model_available and local_generate is not None)
    if mode == "local":
        if not local_ready:
            raise SpeechBackendError(
                "Local model not available. Set TTS_LOCAL_MODEL_AVAILABLE=1 and provide a local generator.",
                error_kind=ERROR_KIND_CONFIG,
            )
        return CallableSpeechBackend(generate=local_generate, name="local")  # type: ignore[arg-type]
    if mode != "huggingface":
        raise RuntimeError("Unsupported TTS_PROCESSING_MODE value. Use huggingface or local.")
    remote = HuggingFaceSpeechBackend.from_config(config=config, logger=logger)
    if local_ready:
        local = CallableSpeechBackend(generate=local_generate, name="local")  # type: ignore[arg-type]
        return FallbackSpeechBackend(primary=remote, fallback=local, logger=logger)
    return remote
