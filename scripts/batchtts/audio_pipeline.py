#!/usr/bin/env python3
from __future__ import annotations

"""End-to-end text-to-audio run: sweep, chunk, synthesize, merge."""

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .batch_merger import BatchError, BatchMerger, OutputFile
from .codec import AudioCodec, CodecBackend
from .codec_backends import create_codec_backend
from .config import BatchConfig, CodecConfig, SynthesisConfig, normalize_bitrate
from .errors import AllBatchesFailedError
from .housekeeping import sweep_in_background
from .logging_utils import Logger
from .speech_backend import SpeechBackend
from .synthesis import ChunkError, ChunkSynthesisOrchestrator, ProgressSink
from .text_chunker import chunk_text
from .voices import resolve_voice_id


@dataclass
class PipelineResult:
    files: List[OutputFile] = field(default_factory=list)
    chunk_errors: List[ChunkError] = field(default_factory=list)
    batch_errors: List[BatchError] = field(default_factory=list)
    chunks_total: int = 0
    cancelled: bool = False

    @property
    def warnings(self) -> List[str]:
        out = [f"Chunk {err.chunk_index + 1} failed - {err.message}" for err in self.chunk_errors]
        out.extend(f"Batch {err.group_index} failed - {err.message}" for err in self.batch_errors)
        return out

    @property
    def total_bytes(self) -> int:
        return sum(f.size_bytes for f in self.files)


@dataclass
class BatchAudioPipeline:
    """Wire chunker, orchestrator, codec and merger for one request at a time."""

    synthesis_config: SynthesisConfig
    codec_config: CodecConfig
    batch_config: BatchConfig
    backend: SpeechBackend
    logger: Logger
    codec_backend: Optional[CodecBackend] = None

    def __post_init__(self) -> None:
        if self.codec_backend is None:
            self.codec_backend = create_codec_backend(config=self.codec_config, logger=self.logger)
        self.codec = AudioCodec(
            backend=self.codec_backend,
            logger=self.logger,
            mp3_sample_rate=self.codec_config.mp3_sample_rate,
        )
        self.orchestrator = ChunkSynthesisOrchestrator(
            backend=self.backend,
            logger=self.logger,
            pause_between_chunks_ms=self.synthesis_config.pause_between_chunks_ms,
        )
        self.merger = BatchMerger(
            codec=self.codec,
            logger=self.logger,
            temp_dir=self.batch_config.temp_dir,
            min_free_disk_mb=self.batch_config.min_free_disk_mb,
        )

    def run(
        self,
        text: str,
        *,
        voice_id: Optional[str] = None,
        output_format: Optional[str] = None,
        bitrate: Optional[int] = None,
        max_chunk_chars: Optional[int] = None,
        max_batch_bytes: Optional[int] = None,
        hard_split: Optional[bool] = None,
        basename: str = "audio",
        progress: Optional[ProgressSink] = None,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> PipelineResult:
        """Convert `text` into one or more audio files.

        Raises `ValueError` for blank text, `AllChunksFailedError` when no
        chunk could be synthesized and `AllBatchesFailedError` when audio
        existed but no batch could be written. Low free disk at merge time
        fails the affected batches only. Partial failures are reported on the
        result.
        """
        started = time.time()
        cfg = self.batch_config
        sweep_in_background(cfg.temp_dir, cfg.temp_max_age_minutes, self.logger)

        voice = resolve_voice_id(voice_id, default=self.synthesis_config.default_voice)
        fmt = str(output_format or cfg.output_format).strip().lower()
        kbps = normalize_bitrate(bitrate if bitrate is not None else self.codec_config.mp3_bitrate_kbps)
        bound = int(max_chunk_chars if max_chunk_chars is not None else self.synthesis_config.max_chunk_chars)
        batch_bytes = int(max_batch_bytes if max_batch_bytes is not None else cfg.max_batch_bytes)

        split_words = self.synthesis_config.hard_split if hard_split is None else bool(hard_split)

        chunks = chunk_text(text, bound, hard_split=split_words)
        if not chunks:
            raise ValueError("No text provided")
        self.logger.info(
            "pipeline_start",
            chunks=len(chunks),
            characters=len(text),
            voice=voice,
            output_format=fmt,
            bitrate_kbps=kbps,
            max_batch_bytes=batch_bytes,
            hard_split=split_words,
        )

        with self.logger.timed("synthesis_stage", chunks=len(chunks)):
            outcome = self.orchestrator.process(chunks, voice, progress=progress, cancel_check=cancel_check)
        result = PipelineResult(
            chunk_errors=list(outcome.errors),
            chunks_total=len(chunks),
            cancelled=outcome.cancelled,
        )
        if not outcome.artifacts:
            self.logger.warn("pipeline_no_audio", cancelled=outcome.cancelled)
            return result

        with self.logger.timed("merge_stage", artifacts=len(outcome.artifacts)):
            merged = self.merger.merge(
                outcome.artifacts,
                batch_bytes,
                fmt,
                kbps,
                cancel_check=cancel_check,
                basename=basename,
            )
        result.files = merged.files
        result.batch_errors = merged.errors
        result.cancelled = result.cancelled or merged.cancelled
        if not merged.files and merged.errors and not merged.cancelled:
            raise AllBatchesFailedError(merged.errors)

        self.logger.info(
            "pipeline_done",
            files=len(result.files),
            total_bytes=result.total_bytes,
            chunk_errors=len(result.chunk_errors),
            batch_errors=len(result.batch_errors),
            cancelled=result.cancelled,
            elapsed_ms=int((time.time() - started) * 1000),
        )
        return result
