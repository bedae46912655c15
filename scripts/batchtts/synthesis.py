#!/usr/bin/env python3
from __future__ import annotations

"""Sequential chunk synthesis with per-chunk failure isolation.

Chunks are sent to the speech backend one at a time in index order. A failed
chunk is recorded as a `ChunkError` and the run moves on; only a run where
every chunk fails is escalated as `AllChunksFailedError`.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from .codec import WAV_HEADER_BYTES
from .errors import ERROR_KIND_UNKNOWN, AllChunksFailedError, InvalidAudioError, classify_synthesis_exception
from .logging_utils import Logger
from .speech_backend import SpeechBackend, SynthesisResult
from .text_chunker import TextChunk

ProgressSink = Callable[[int, int], None]
CancelCheck = Callable[[], bool]


@dataclass
class AudioArtifact:
    """PCM audio for one synthesized chunk.

    `size_bytes` is the size of the chunk as a standalone WAV file, the unit
    the merger budgets batches in.
    """

    chunk_index: int
    samples: np.ndarray
    sample_rate: int
    channels: int
    size_bytes: int

    @staticmethod
    def from_result(chunk_index: int, result: SynthesisResult) -> "AudioArtifact":
        return AudioArtifact(
            chunk_index=int(chunk_index),
            samples=result.samples,
            sample_rate=int(result.sample_rate),
            channels=int(result.channels),
            size_bytes=int(result.samples.nbytes) + WAV_HEADER_BYTES,
        )

    @property
    def duration_seconds(self) -> float:
        frames = len(self.samples) // max(1, self.channels)
        return frames / float(self.sample_rate) if self.sample_rate else 0.0


@dataclass(frozen=True)
class ChunkError:
    chunk_index: int
    message: str
    error_kind: str = ERROR_KIND_UNKNOWN


@dataclass
class SynthesisOutcome:
    artifacts: List[AudioArtifact] = field(default_factory=list)
    errors: List[ChunkError] = field(default_factory=list)
    chunks_total: int = 0
    cancelled: bool = False

    @property
    def warnings(self) -> List[str]:
        return [f"Chunk {err.chunk_index + 1} failed - {err.message}" for err in self.errors]


@dataclass
class ChunkSynthesisOrchestrator:
    """Drive text chunks through a speech backend, strictly one at a time."""

    backend: SpeechBackend
    logger: Logger
    pause_between_chunks_ms: int = 0

    def _pause(self, cancel_check: Optional[CancelCheck]) -> None:
        """Sleep between backend calls, waking early on cancellation."""
        delay_s = max(0, int(self.pause_between_chunks_ms)) / 1000.0
        if delay_s <= 0:
            return
        deadline = time.time() + delay_s
        while True:
            if cancel_check is not None and cancel_check():
                return
            remaining = deadline - time.time()
            if remaining <= 0:
                return
            time.sleep(min(0.05, remaining))

    def _report_progress(self, progress: Optional[ProgressSink], completed: int, total: int) -> None:
        if progress is None:
            return
        try:
            progress(completed, total)
        except Exception as exc:  # noqa: BLE001
            self.logger.warn("progress_sink_failed", completed=completed, total=total, error=str(exc))

    def synthesize_chunk(self, chunk: TextChunk, voice_id: str) -> AudioArtifact:
        result = self.backend.synthesize(chunk.text, voice_id)
        if not isinstance(result, SynthesisResult):
            raise InvalidAudioError(
                f"{self.backend.name} backend must return SynthesisResult, got {type(result).__name__}"
            )
        return AudioArtifact.from_result(chunk.index, result)

    def process(
        self,
        chunks: Sequence[TextChunk],
        voice_id: str,
        *,
        progress: Optional[ProgressSink] = None,
        cancel_check: Optional[CancelCheck] = None,
    ) -> SynthesisOutcome:
        """Synthesize every chunk in index order.

        Progress is reported as `(completed, total)` after each chunk whether it
        succeeded or failed. `cancel_check` is consulted before each backend
        call; a call already in flight is allowed to finish.
        """
        ordered = sorted(chunks, key=lambda c: c.index)
        seen: Dict[int, bool] = {}
        for chunk in ordered:
            if chunk.index in seen:
                raise ValueError(f"duplicate chunk index: {chunk.index}")
            seen[chunk.index] = True

        total = len(ordered)
        outcome = SynthesisOutcome(chunks_total=total)
        if total == 0:
            return outcome

        def heartbeat_status() -> Dict[str, object]:
            return {
                "done": len(outcome.artifacts),
                "failed": len(outcome.errors),
                "total": total,
            }

        self.logger.info("synthesis_start", chunks_total=total, backend=self.backend.name, voice=voice_id)
        with self.logger.heartbeat("chunk_synthesis", status_fn=heartbeat_status):
            for position, chunk in enumerate(ordered):
                if position > 0:
                    self._pause(cancel_check)
                if cancel_check is not None and cancel_check():
                    outcome.cancelled = True
                    self.logger.warn(
                        "synthesis_cancelled",
                        completed=position,
                        total=total,
                        next_chunk=chunk.index,
                    )
                    break
                started = time.time()
                try:
                    artifact = self.synthesize_chunk(chunk, voice_id)
                except Exception as exc:  # noqa: BLE001
                    kind = classify_synthesis_exception(exc)
                    outcome.errors.append(
                        ChunkError(chunk_index=chunk.index, message=str(exc) or type(exc).__name__, error_kind=kind)
                    )
                    self.logger.warn(
                        "chunk_synthesis_failed",
                        chunk_index=chunk.index,
                        error=str(exc),
                        error_kind=kind,
                    )
                else:
                    outcome.artifacts.append(artifact)
                    self.logger.info(
                        "chunk_synthesized",
                        chunk_index=chunk.index,
                        chars=len(chunk.text),
                        samples=int(len(artifact.samples)),
                        sample_rate=artifact.sample_rate,
                        elapsed_ms=int((time.time() - started) * 1000),
                    )
                self._report_progress(progress, position + 1, total)

        self.logger.info(
            "synthesis_done",
            artifacts=len(outcome.artifacts),
            failed=len(outcome.errors),
            cancelled=outcome.cancelled,
        )
        if not outcome.artifacts and outcome.errors and not outcome.cancelled:
            raise AllChunksFailedError(outcome.errors)
        return outcome
