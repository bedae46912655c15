#!/usr/bin/env python3
from __future__ import annotations

import argparse
import dataclasses
import importlib
import os
import signal
import sys
import time
from typing import Callable, Optional

from batchtts.audio_pipeline import BatchAudioPipeline, PipelineResult
from batchtts.config import (
    OUTPUT_FORMATS,
    SUPPORTED_MP3_BITRATES,
    BatchConfig,
    CodecConfig,
    LoggingConfig,
    SynthesisConfig,
)
from batchtts.errors import (
    ERROR_KIND_INTERRUPTED,
    ERROR_KIND_UNKNOWN,
    AllBatchesFailedError,
    AllChunksFailedError,
    SpeechBackendError,
)
from batchtts.housekeeping import PeriodicJanitor
from batchtts.io_utils import read_text_file_with_fallback, write_bytes_atomic, write_json_atomic
from batchtts.logging_utils import Logger
from batchtts.speech_backend import SynthesisResult
from batchtts.speech_backend_factory import create_speech_backend
from batchtts.text_chunker import chunk_text, estimate_batch
from batchtts.voices import voices_by_category


def _basename_arg(value: str) -> str:
    name = str(value).strip()
    if not name:
        raise argparse.ArgumentTypeError("basename must not be empty")
    if name in {".", ".."}:
        raise argparse.ArgumentTypeError("basename cannot be '.' or '..'")
    if os.path.basename(name) != name:
        raise argparse.ArgumentTypeError("basename must be a file name, not a path")
    if os.path.altsep and os.path.altsep in name:
        raise argparse.ArgumentTypeError("basename cannot contain path separators")
    return name


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from exc
    if parsed < 1:
        raise argparse.ArgumentTypeError("value must be >= 1")
    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a number, got {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("value must be > 0")
    return parsed


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert a text file into size-bounded audio files via a speech backend."
    )
    parser.add_argument("text_path", nargs="?", help="Input text file path")
    parser.add_argument("outdir", nargs="?", help="Output directory")
    parser.add_argument(
        "basename",
        nargs="?",
        default="audio",
        type=_basename_arg,
        help="Output base filename (must not contain path separators)",
    )
    parser.add_argument("--voice", default=None, help="Voice id (default: TTS_DEFAULT_VOICE or af_sky)")
    parser.add_argument("--format", dest="output_format", choices=list(OUTPUT_FORMATS), default=None)
    parser.add_argument("--bitrate", type=int, choices=list(SUPPORTED_MP3_BITRATES), default=None)
    parser.add_argument("--max-chunk-chars", type=_positive_int, default=None)
    parser.add_argument(
        "--hard-split",
        action="store_true",
        help="Cut sentences longer than --max-chunk-chars on word boundaries",
    )
    parser.add_argument("--max-batch-mb", type=_positive_float, default=None)
    parser.add_argument(
        "--local-generator",
        default=None,
        help="Local model entrypoint as 'module:function' returning SynthesisResult",
    )
    parser.add_argument("--list-voices", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)
    if not args.list_voices and (not args.text_path or not args.outdir):
        parser.error("text_path and outdir are required unless --list-voices is given")
    return args


def load_local_generator(spec: str) -> Callable[[str, str], SynthesisResult]:
    """Resolve a `module:function` reference to a local synthesis callable."""
    module_name, sep, attr = str(spec or "").partition(":")
    if not sep or not module_name.strip() or not attr.strip():
        raise ValueError("local generator must look like 'module:function'")
    module = importlib.import_module(module_name.strip())
    generate = getattr(module, attr.strip(), None)
    if not callable(generate):
        raise ValueError(f"{spec} is not callable")
    return generate


def _print_voices() -> None:
    for category, voices in voices_by_category().items():
        print(category)
        for voice in voices:
            print(f"  {voice.id:<12} {voice.name:<10} {voice.description}")


def _write_outputs(outdir: str, result: PipelineResult) -> list[str]:
    paths: list[str] = []
    for output in result.files:
        paths.append(write_bytes_atomic(os.path.join(outdir, output.filename), output.data))
    return paths


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.list_voices:
        _print_voices()
        return 0
    started = time.time()

    log_cfg = LoggingConfig.from_env()
    if args.debug:
        log_cfg = dataclasses.replace(log_cfg, level="DEBUG", debug_events=True)
    elif args.verbose:
        log_cfg = dataclasses.replace(log_cfg, level="INFO")
    logger = Logger.create(log_cfg)
    shutdown = {"requested": False}

    def _signal_handler(signum, _frame):  # type: ignore[no-untyped-def]
        shutdown["requested"] = True
        logger.warn("signal_received", signal=signum)

    signal.signal(signal.SIGINT, _signal_handler)
    sigterm = getattr(signal, "SIGTERM", None)
    if sigterm is not None:
        signal.signal(sigterm, _signal_handler)

    synthesis_cfg = SynthesisConfig.from_env()
    codec_cfg = CodecConfig.from_env()
    batch_cfg = BatchConfig.from_env()
    if args.max_chunk_chars is not None:
        synthesis_cfg = dataclasses.replace(synthesis_cfg, max_chunk_chars=args.max_chunk_chars)
    if args.hard_split:
        synthesis_cfg = dataclasses.replace(synthesis_cfg, hard_split=True)
    if args.bitrate is not None:
        codec_cfg = dataclasses.replace(codec_cfg, mp3_bitrate_kbps=args.bitrate)
    if args.output_format is not None:
        batch_cfg = dataclasses.replace(batch_cfg, output_format=args.output_format)
    if args.max_batch_mb is not None:
        batch_cfg = dataclasses.replace(batch_cfg, max_batch_mb=args.max_batch_mb)
    local_generate: Optional[Callable[[str, str], SynthesisResult]] = None

    summary_path = os.path.join(args.outdir, "run_summary.json")
    status = "failed"
    exit_code = 1
    failure_kind: Optional[str] = None
    output_paths: list[str] = []
    result: Optional[PipelineResult] = None
    janitor: Optional[PeriodicJanitor] = None
    try:
        if args.local_generator:
            local_generate = load_local_generator(args.local_generator)
            synthesis_cfg = dataclasses.replace(synthesis_cfg, local_model_available=True)
        text, encoding = read_text_file_with_fallback(
            args.text_path,
            on_fallback=lambda enc: logger.warn("input_encoding_fallback", encoding=enc),
        )
        planned = chunk_text(text, synthesis_cfg.max_chunk_chars, hard_split=synthesis_cfg.hard_split)
        estimate = estimate_batch(planned, batch_cfg.output_format)
        logger.info(
            "chunk_plan",
            encoding=encoding,
            chunks=estimate.chunks,
            characters=estimate.characters,
            estimated_seconds=estimate.estimated_seconds,
            estimated_megabytes=estimate.estimated_megabytes,
        )
        if batch_cfg.janitor_interval_seconds > 0:
            janitor = PeriodicJanitor(
                base_dir=batch_cfg.temp_dir,
                max_age_minutes=batch_cfg.temp_max_age_minutes,
                interval_seconds=batch_cfg.janitor_interval_seconds,
                logger=logger,
            ).start()
        backend = create_speech_backend(config=synthesis_cfg, logger=logger, local_generate=local_generate)
        pipeline = BatchAudioPipeline(
            synthesis_config=synthesis_cfg,
            codec_config=codec_cfg,
            batch_config=batch_cfg,
            backend=backend,
            logger=logger,
        )
        codec_backend = pipeline.codec_backend
        if batch_cfg.output_format == "mp3" and codec_backend is not None:
            # The merger falls back to WAV, so a missing encoder is only a warning.
            try:
                codec_backend.check_dependencies()
            except RuntimeError as exc:
                logger.warn("mp3_encoder_unavailable", backend=codec_backend.name, error=str(exc))

        def _progress(completed: int, total: int) -> None:
            logger.info("progress", completed=completed, total=total, percent=int(completed * 100 / total))

        result = pipeline.run(
            text,
            voice_id=args.voice,
            basename=args.basename,
            progress=_progress,
            cancel_check=lambda: shutdown["requested"],
        )
        output_paths = _write_outputs(args.outdir, result)
        for path in output_paths:
            print(path)
        if result.cancelled:
            status = "interrupted"
            exit_code = 130
            failure_kind = ERROR_KIND_INTERRUPTED
        else:
            status = "completed_with_warnings" if result.warnings else "completed"
            exit_code = 0
    except (InterruptedError, KeyboardInterrupt) as exc:
        logger.warn("audio_interrupted", error=str(exc))
        status = "interrupted"
        exit_code = 130
        failure_kind = ERROR_KIND_INTERRUPTED
    except AllChunksFailedError as exc:
        logger.error("audio_failed_all_chunks", error=str(exc), failed_kinds=exc.failed_kinds)
        failure_kind = exc.failed_kinds[0] if exc.failed_kinds else ERROR_KIND_UNKNOWN
    except AllBatchesFailedError as exc:
        logger.error("audio_failed_all_batches", error=str(exc), batches=len(exc.errors))
        failure_kind = ERROR_KIND_UNKNOWN
    except SpeechBackendError as exc:
        logger.error("audio_failed_backend", error=str(exc), error_kind=exc.error_kind)
        failure_kind = exc.error_kind
    except (ValueError, RuntimeError, OSError, ImportError) as exc:
        logger.error("audio_failed", error=str(exc))
        failure_kind = ERROR_KIND_UNKNOWN
    finally:
        if janitor is not None:
            janitor.stop()

    summary: dict[str, object] = {
        "component": "make_audio",
        "status": status,
        "failure_kind": failure_kind,
        "text_path": args.text_path,
        "output_paths": output_paths,
        "elapsed_seconds": round(time.time() - started, 2),
    }
    if result is not None:
        summary.update(
            {
                "chunks_total": result.chunks_total,
                "files": [
                    {
                        "filename": f.filename,
                        "format": f.format,
                        "size_bytes": f.size_bytes,
                        "group_index": f.group_index,
                        "chunk_indexes": f.chunk_indexes,
                    }
                    for f in result.files
                ],
                "chunk_errors": [dataclasses.asdict(err) for err in result.chunk_errors],
                "batch_errors": [dataclasses.asdict(err) for err in result.batch_errors],
                "warnings": result.warnings,
                "cancelled": result.cancelled,
            }
        )
    try:
        write_json_atomic(summary_path, summary)
    except OSError as exc:
        logger.error("run_summary_write_failed", path=summary_path, error=str(exc))
    logger.info("audio_run_finished", status=status, exit_code=exit_code, run_summary=summary_path)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
