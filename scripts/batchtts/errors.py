#!/usr/bin/env python3
from __future__ import annotations

import re
import socket
import urllib.error
from typing import Iterable, List, Sequence

ERROR_KIND_TIMEOUT = "timeout"
ERROR_KIND_RATE_LIMIT = "rate_limit"
ERROR_KIND_NETWORK = "network"
ERROR_KIND_CONFIG = "config"
ERROR_KIND_INVALID_AUDIO = "invalid_audio"
ERROR_KIND_INTERRUPTED = "interrupted"
ERROR_KIND_UNKNOWN = "unknown"


def _normalize_kind(kind: str) -> str:
    return str(kind or ERROR_KIND_UNKNOWN).strip().lower() or ERROR_KIND_UNKNOWN


class SpeechBackendError(RuntimeError):
    """Failure raised by a speech backend adapter for one synthesis call."""

    def __init__(self, message: str, *, error_kind: str = ERROR_KIND_UNKNOWN) -> None:
        super().__init__(message)
        self.error_kind = _normalize_kind(error_kind)


class InvalidAudioError(SpeechBackendError):
    """Backend answered, but the payload is not usable PCM audio."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_kind=ERROR_KIND_INVALID_AUDIO)


class CodecError(RuntimeError):
    """Container parsing or PCM shape problem inside the codec adapter."""


class EncodingError(CodecError):
    """Lossy encoder fault; callers fall back to the WAV container."""


class MergeIOError(RuntimeError):
    """Filesystem or subprocess failure while writing one batch."""

    def __init__(self, message: str, *, group_index: int) -> None:
        super().__init__(message)
        self.group_index = int(group_index)


class AllChunksFailedError(RuntimeError):
    """No chunk produced audio; carries every per-chunk error."""

    def __init__(self, errors: Sequence[object]) -> None:
        self.errors = list(errors)
        self.failed_kinds = summarize_failure_kinds(getattr(err, "error_kind", "") for err in self.errors)
        kinds_preview = ", ".join(self.failed_kinds) or ERROR_KIND_UNKNOWN
        super().__init__(
            f"Speech synthesis failed for all {len(self.errors)} chunk(s). kinds=[{kinds_preview}]"
        )


class AllBatchesFailedError(RuntimeError):
    """Artifacts were synthesized but no output batch could be written."""

    def __init__(self, errors: Sequence[object]) -> None:
        self.errors = list(errors)
        super().__init__(f"Audio merge failed for all {len(self.errors)} batch(es)")


def _iter_exception_chain(exc: BaseException) -> Iterable[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        yield current
        seen.add(id(current))
        next_exc = getattr(current, "__cause__", None) or getattr(current, "__context__", None)
        current = next_exc if isinstance(next_exc, BaseException) else None


def classify_synthesis_exception(exc: BaseException) -> str:
    """Map a synthesis failure to a coarse error kind for reporting."""
    messages: List[str] = []
    for item in _iter_exception_chain(exc):
        if isinstance(item, SpeechBackendError):
            return item.error_kind
        if isinstance(item, InterruptedError):
            return ERROR_KIND_INTERRUPTED
        if isinstance(item, (TimeoutError, socket.timeout)):
            return ERROR_KIND_TIMEOUT
        if isinstance(item, urllib.error.HTTPError):
            code = int(getattr(item, "code", 0) or 0)
            if code == 429:
                return ERROR_KIND_RATE_LIMIT
            if code in {408, 504}:
                return ERROR_KIND_TIMEOUT
            if code >= 500:
                return ERROR_KIND_NETWORK
        if isinstance(item, urllib.error.URLError):
            reason = getattr(item, "reason", None)
            if isinstance(reason, (TimeoutError, socket.timeout)):
                return ERROR_KIND_TIMEOUT
            return ERROR_KIND_NETWORK
        if isinstance(item, ConnectionError):
            return ERROR_KIND_NETWORK
        messages.append(str(item or ""))

    message = " ".join(messages).lower()
    if "429" in message or "rate limit" in message:
        return ERROR_KIND_RATE_LIMIT
    if "timeout" in message or "timed out" in message:
        return ERROR_KIND_TIMEOUT
    if "configuration missing" in message or "not configured" in message:
        return ERROR_KIND_CONFIG
    if re.search(r"\b(connection|network|sleeping)\b", message) or "urlopen error" in message:
        return ERROR_KIND_NETWORK
    return ERROR_KIND_UNKNOWN


def summarize_failure_kinds(kinds: Iterable[str]) -> List[str]:
    out: List[str] = []
    for kind in kinds:
        normalized = _normalize_kind(kind)
        if normalized not in out:
            out.append(normalized)
    return out
