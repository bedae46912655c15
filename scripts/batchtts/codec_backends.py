#!/usr/bin/env python3
from __future__ import annotations

"""MP3 encoder backends behind the `CodecBackend` contract.

`ffmpeg` runs libmp3lame in an external process and streams PCM to it frame by
frame; closing stdin flushes the encoder. `pydub` encodes in-process from an
`AudioSegment`.
"""

import io
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from pydub import AudioSegment

from .codec import BYTES_PER_SAMPLE, MP3_CHANNELS, MP3_FRAME_SAMPLES, CodecBackend, as_int16, iter_frames
from .config import CodecConfig
from .errors import EncodingError
from .logging_utils import Logger
from .temp_files import TempWorkspace


def ffmpeg_encode_command(
    *,
    out_path: str,
    sample_rate: int,
    bitrate_kbps: int,
    target_sample_rate: int,
    loglevel: str = "warning",
) -> List[str]:
    """Build the ffmpeg command that reads raw s16le mono PCM from stdin."""
    return [
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        loglevel,
        "-y",
        "-f",
        "s16le",
        "-ar",
        str(int(sample_rate)),
        "-ac",
        str(MP3_CHANNELS),
        "-i",
        "pipe:0",
        "-acodec",
        "libmp3lame",
        "-b:a",
        f"{int(bitrate_kbps)}k",
        "-ar",
        str(int(target_sample_rate)),
        "-ac",
        str(MP3_CHANNELS),
        out_path,
    ]


@dataclass
class FfmpegCodecBackend:
    """Encode through an external ffmpeg/libmp3lame process."""

    logger: Logger
    loglevel: str = "warning"
    frame_samples: int = MP3_FRAME_SAMPLES
    name: str = "ffmpeg"

    def check_dependencies(self) -> None:
        if shutil.which("ffmpeg") is None:
            raise RuntimeError("ffmpeg is required but not found in PATH")

    def _stream_frames(self, proc: subprocess.Popen, samples: np.ndarray) -> None:
        stdin = proc.stdin
        if stdin is None:
            return
        try:
            for frame in iter_frames(samples, self.frame_samples):
                stdin.write(frame.astype("<i2", copy=False).tobytes())
        except BrokenPipeError:
            # ffmpeg exited early; its return code reports the failure.
            pass
        finally:
            try:
                stdin.close()
            except BrokenPipeError:
                pass

    def _encode_to_path(
        self,
        samples: np.ndarray,
        out_path: str,
        *,
        sample_rate: int,
        bitrate_kbps: int,
        target_sample_rate: int,
    ) -> bytes:
        command = ffmpeg_encode_command(
            out_path=out_path,
            sample_rate=sample_rate,
            bitrate_kbps=bitrate_kbps,
            target_sample_rate=target_sample_rate,
            loglevel=self.loglevel,
        )
        self.logger.debug("run_command", command=" ".join(command))
        with tempfile.TemporaryFile() as stderr_sink:
            try:
                proc = subprocess.Popen(
                    command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=stderr_sink,
                )
            except OSError as exc:
                raise EncodingError(f"ffmpeg could not be started: {exc}") from exc
            self._stream_frames(proc, samples)
            returncode = proc.wait()
            if returncode != 0:
                stderr_sink.seek(0)
                stderr_tail = stderr_sink.read().decode("utf-8", errors="ignore")[-1000:]
                self.logger.error(
                    "command_failed",
                    command=" ".join(command),
                    returncode=returncode,
                    stderr=stderr_tail,
                )
                raise EncodingError(f"ffmpeg mp3 encoding failed with code {returncode}")
        if not os.path.exists(out_path) or os.path.getsize(out_path) <= 0:
            raise EncodingError("ffmpeg produced no mp3 output")
        with open(out_path, "rb") as f:
            return f.read()

    def encode_mp3(
        self,
        samples: np.ndarray,
        *,
        sample_rate: int,
        bitrate_kbps: int,
        target_sample_rate: int,
        workspace: Optional[TempWorkspace] = None,
    ) -> bytes:
        pcm = as_int16(samples)
        if workspace is not None:
            handle = workspace.create(".mp3", label="enc")
            try:
                return self._encode_to_path(
                    pcm,
                    handle.path,
                    sample_rate=sample_rate,
                    bitrate_kbps=bitrate_kbps,
                    target_sample_rate=target_sample_rate,
                )
            finally:
                workspace.release(handle)
        with tempfile.TemporaryDirectory() as tmp:
            return self._encode_to_path(
                pcm,
                os.path.join(tmp, "encoded.mp3"),
                sample_rate=sample_rate,
                bitrate_kbps=bitrate_kbps,
                target_sample_rate=target_sample_rate,
            )


@dataclass
class PydubCodecBackend:
    """Encode in-process through pydub's AudioSegment export."""

    logger: Logger
    name: str = "pydub"

    def check_dependencies(self) -> None:
        converter = getattr(AudioSegment, "converter", "") or "ffmpeg"
        if shutil.which(converter) is None:
            raise RuntimeError(f"pydub encoder '{converter}' not found in PATH")

    def encode_mp3(
        self,
        samples: np.ndarray,
        *,
        sample_rate: int,
        bitrate_kbps: int,
        target_sample_rate: int,
        workspace: Optional[TempWorkspace] = None,
    ) -> bytes:
        pcm = as_int16(samples)
        segment = AudioSegment(
            data=pcm.astype("<i2", copy=False).tobytes(),
            sample_width=BYTES_PER_SAMPLE,
            frame_rate=int(sample_rate),
            channels=MP3_CHANNELS,
        )
        if int(target_sample_rate) != int(sample_rate):
            segment = segment.set_frame_rate(int(target_sample_rate))
        buf = io.BytesIO()
        segment.export(buf, format="mp3", bitrate=f"{int(bitrate_kbps)}k")
        data = buf.getvalue()
        self.logger.debug("pydub_mp3_exported", frames=int(segment.frame_count()), bytes=len(data))
        return data


def create_codec_backend(*, config: CodecConfig, logger: Logger) -> CodecBackend:
    backend = str(config.backend or "ffmpeg").strip().lower()
    if backend == "pydub":
        return PydubCodecBackend(logger=logger)
    if backend != "ffmpeg":
        raise RuntimeError("Unsupported CODEC_BACKEND value. Use ffmpeg or pydub.")
    return FfmpegCodecBackend(logger=logger, loglevel=config.ffmpeg_loglevel)
