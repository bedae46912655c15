#!/usr/bin/env python3
from __future__ import annotations

"""Speech backend adapter boundary.

Every backend returns the canonical `SynthesisResult` (int16 PCM + sample
rate). Raw payloads are normalized through the explicit constructors
(`from_pcm`, `from_float_samples`, `from_wav_bytes`) instead of probing
arbitrary fields on whatever object a model returns.
"""

import base64
import binascii
import json
import random
import re
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

import numpy as np

from .codec import as_int16, demux, float_to_int16
from .config import SynthesisConfig
from .errors import (
    ERROR_KIND_CONFIG,
    ERROR_KIND_NETWORK,
    CodecError,
    InvalidAudioError,
    SpeechBackendError,
    classify_synthesis_exception,
)
from .logging_utils import Logger


@dataclass(frozen=True)
class SynthesisResult:
    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    @staticmethod
    def from_pcm(samples: Any, sample_rate: int, channels: int = 1) -> "SynthesisResult":
        if int(sample_rate) <= 0:
            raise InvalidAudioError(f"invalid sample rate from backend: {sample_rate}")
        if int(channels) <= 0:
            raise InvalidAudioError(f"invalid channel count from backend: {channels}")
        try:
            pcm = as_int16(samples)
        except (CodecError, TypeError, ValueError) as exc:
            raise InvalidAudioError(f"backend samples are not int16 PCM: {exc}") from exc
        if pcm.size == 0:
            raise InvalidAudioError("backend returned empty audio")
        return SynthesisResult(samples=pcm, sample_rate=int(sample_rate), channels=int(channels))

    @staticmethod
    def from_float_samples(samples: Any, sample_rate: int, channels: int = 1) -> "SynthesisResult":
        """Normalize float model output in [-1, 1] (clamped) to int16 PCM."""
        try:
            pcm = float_to_int16(samples)
        except (TypeError, ValueError) as exc:
            raise InvalidAudioError(f"backend samples are not numeric: {exc}") from exc
        return SynthesisResult.from_pcm(pcm, sample_rate, channels)

    @staticmethod
    def from_wav_bytes(data: bytes) -> "SynthesisResult":
        try:
            stream = demux(data)
        except CodecError as exc:
            raise InvalidAudioError(f"backend audio is not a 16-bit PCM WAV: {exc}") from exc
        return SynthesisResult.from_pcm(stream.samples, stream.sample_rate, stream.channels)


@runtime_checkable
class SpeechBackend(Protocol):
    """The single function an external synthesizer must provide."""

    name: str

    def synthesize(self, text: str, voice_id: str) -> SynthesisResult:
        ...


@dataclass
class CallableSpeechBackend:
    """Wrap a caller-supplied `generate(text, voice_id) -> SynthesisResult`."""

    generate: Callable[[str, str], SynthesisResult]
    name: str = "local"

    def synthesize(self, text: str, voice_id: str) -> SynthesisResult:
        result = self.generate(text, voice_id)
        if not isinstance(result, SynthesisResult):
            raise InvalidAudioError(
                f"{self.name} backend must return SynthesisResult, got {type(result).__name__}"
            )
        return result


@dataclass
class FallbackSpeechBackend:
    """Try the primary backend, then the fallback when the primary fails."""

    primary: SpeechBackend
    fallback: SpeechBackend
    logger: Logger

    @property
    def name(self) -> str:
        return f"{self.primary.name}+{self.fallback.name}"

    def synthesize(self, text: str, voice_id: str) -> SynthesisResult:
        try:
            return self.primary.synthesize(text, voice_id)
        except Exception as exc:  # noqa: BLE001
            self.logger.warn(
                "speech_backend_fallback",
                primary=self.primary.name,
                fallback=self.fallback.name,
                error=str(exc),
                error_kind=classify_synthesis_exception(exc),
            )
            return self.fallback.synthesize(text, voice_id)


def _redact_sensitive_text(text: str, *, api_token: str) -> str:
    rendered = str(text or "")
    secret = str(api_token or "").strip()
    if secret:
        rendered = rendered.replace(secret, "***")
    return re.sub(r"(?i)(bearer\s+)[^\s\"']+", r"\1***", rendered)


def _is_retriable_http(code: int) -> bool:
    return int(code) in {408, 409, 429, 500, 502, 503, 504}


def _decode_base64_audio(value: str) -> bytes:
    payload = str(value or "").strip()
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise InvalidAudioError(f"invalid base64 audio payload: {exc}") from exc


@dataclass
class HuggingFaceSpeechBackend:
    """Gradio-style `/api/predict` endpoint returning WAV audio."""

    api_url: str
    api_token: str
    logger: Logger
    timeout_seconds: int = 60
    retries: int = 3
    backoff_base_ms: int = 800
    backoff_max_ms: int = 8000
    audio_format: str = "wav"
    name: str = "huggingface"

    @staticmethod
    def from_config(*, config: SynthesisConfig, logger: Logger) -> "HuggingFaceSpeechBackend":
        if not config.huggingface_configured:
            raise SpeechBackendError(
                "Hugging Face API configuration missing. "
                "Set HUGGINGFACE_API_TOKEN and HUGGINGFACE_TTS_API_URL.",
                error_kind=ERROR_KIND_CONFIG,
            )
        if not config.huggingface_api_url.startswith(("https://", "http://")):
            raise SpeechBackendError(
                "HUGGINGFACE_TTS_API_URL must be an http(s) URL",
                error_kind=ERROR_KIND_CONFIG,
            )
        return HuggingFaceSpeechBackend(
            api_url=config.huggingface_api_url,
            api_token=config.huggingface_api_token,
            logger=logger,
            timeout_seconds=config.timeout_seconds,
            retries=config.retries,
            backoff_base_ms=config.retry_backoff_base_ms,
            backoff_max_ms=config.retry_backoff_max_ms,
        )

    @property
    def predict_url(self) -> str:
        return f"{self.api_url.rstrip('/')}/api/predict"

    def _sleep_backoff(self, attempt: int) -> None:
        backoff_s = min(
            self.backoff_max_ms / 1000.0,
            (self.backoff_base_ms / 1000.0) * (2 ** max(0, int(attempt) - 1)),
        )
        time.sleep(backoff_s + random.uniform(0.0, 0.2))

    def _request(self, request: urllib.request.Request, *, what: str) -> bytes:
        """Perform one HTTP request with retry/backoff on retriable failures."""
        last_exc: Optional[BaseException] = None
        for attempt in range(1, self.retries + 1):
            started = time.time()
            try:
                with urllib.request.urlopen(request, timeout=self.timeout_seconds) as resp:
                    body = resp.read()
                self.logger.debug(
                    "huggingface_request_ok",
                    what=what,
                    attempt=attempt,
                    bytes=len(body),
                    elapsed_ms=int((time.time() - started) * 1000),
                )
                return body
            except urllib.error.HTTPError as exc:
                code = int(getattr(exc, "code", 0) or 0)
                retriable = _is_retriable_http(code)
                detail = exc.read().decode("utf-8", errors="ignore")[:500]
                self.logger.warn(
                    "huggingface_http_error",
                    what=what,
                    attempt=attempt,
                    code=code,
                    retriable=retriable,
                    detail=_redact_sensitive_text(detail, api_token=self.api_token),
                )
                last_exc = exc
                if not retriable or attempt >= self.retries:
                    break
            except (urllib.error.URLError, OSError) as exc:
                self.logger.warn(
                    "huggingface_request_error",
                    what=what,
                    attempt=attempt,
                    error=_redact_sensitive_text(str(exc), api_token=self.api_token),
                )
                last_exc = exc
                if attempt >= self.retries:
                    break
            self._sleep_backoff(attempt)
        safe_error = _redact_sensitive_text(str(last_exc), api_token=self.api_token)
        kind = classify_synthesis_exception(last_exc) if last_exc is not None else ERROR_KIND_NETWORK
        if isinstance(last_exc, urllib.error.HTTPError):
            message = f"Hugging Face API error ({what}): {safe_error}"
        else:
            message = (
                f"Hugging Face {what} failed: {safe_error}. "
                "The Space may be sleeping - please try again in a moment"
            )
        raise SpeechBackendError(message, error_kind=kind) from last_exc

    def _predict(self, text: str, voice_id: str) -> Dict[str, Any]:
        body = json.dumps({"data": [text, voice_id, self.audio_format]}).encode("utf-8")
        request = urllib.request.Request(
            self.predict_url,
            data=body,
            headers={
                "Authorization": f"Bearer {self.api_token}",
                "Content-Type": "application/json",
            },
        )
        raw = self._request(request, what="predict")
        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise InvalidAudioError(f"Hugging Face returned non-JSON response: {exc}") from exc
        if not isinstance(parsed, dict):
            raise InvalidAudioError("Invalid response format from Hugging Face API")
        return parsed

    def _audio_bytes_from_response(self, result: Dict[str, Any]) -> bytes:
        data = result.get("data")
        first = data[0] if isinstance(data, list) and data else None
        if isinstance(first, str) and first.startswith(("http://", "https://")):
            return self._request(urllib.request.Request(first), what="audio_download")
        if isinstance(first, dict) and isinstance(first.get("data"), str):
            return _decode_base64_audio(first["data"])
        raise InvalidAudioError("Invalid response format from Hugging Face API")

    def synthesize(self, text: str, voice_id: str) -> SynthesisResult:
        response = self._predict(text, voice_id)
        audio = self._audio_bytes_from_response(response)
        if not audio:
            raise InvalidAudioError("Hugging Face returned empty audio")
        return SynthesisResult.from_wav_bytes(audio)
