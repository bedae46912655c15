#!/usr/bin/env python3
from __future__ import annotations

"""PCM helpers and the audio codec adapter.

PCM audio is carried as numpy int16 arrays (interleaved when multi-channel).
The canonical interchange container is a 44-byte-header 16-bit PCM WAV; lossy
MP3 encoding is delegated to a configured backend (external ffmpeg process or
in-process pydub).
"""

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Protocol, Sequence, runtime_checkable

import numpy as np

from .errors import CodecError, EncodingError
from .logging_utils import Logger

if TYPE_CHECKING:
    from .temp_files import TempWorkspace


WAV_HEADER_BYTES = 44
BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8
PCM_FORMAT_TAG = 1
MP3_FRAME_SAMPLES = 1152
MP3_CHANNELS = 1
INT16_SCALE = 0x7FFF

_WAV_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


@dataclass(frozen=True)
class PcmStream:
    samples: np.ndarray
    sample_rate: int
    channels: int

    @property
    def frame_count(self) -> int:
        return int(len(self.samples) // max(1, self.channels))

    @property
    def duration_seconds(self) -> float:
        return self.frame_count / float(self.sample_rate) if self.sample_rate else 0.0


def as_int16(samples: object) -> np.ndarray:
    """Return a contiguous 1-D int16 view/copy of integer PCM samples."""
    array = np.asarray(samples)
    if array.dtype.kind == "f":
        raise CodecError("float samples must go through float_to_int16 first")
    return np.ascontiguousarray(array.reshape(-1), dtype=np.int16)


def float_to_int16(samples: object) -> np.ndarray:
    """Clamp float samples to [-1.0, 1.0] and quantize to int16."""
    array = np.asarray(samples, dtype=np.float64).reshape(-1)
    clipped = np.clip(np.nan_to_num(array, nan=0.0), -1.0, 1.0)
    return (clipped * INT16_SCALE).astype(np.int16)


def downmix_to_mono(samples: np.ndarray, channels: int) -> np.ndarray:
    """Average interleaved channels into one mono channel."""
    channels = int(channels)
    pcm = as_int16(samples)
    if channels <= 1:
        return pcm
    usable = len(pcm) - (len(pcm) % channels)
    frames = pcm[:usable].reshape(-1, channels).astype(np.int32)
    return (frames.sum(axis=1) / channels).astype(np.int16)


def iter_frames(samples: np.ndarray, frame_size: int = MP3_FRAME_SAMPLES) -> Iterator[np.ndarray]:
    """Yield consecutive fixed-size frames; the last one may be short."""
    size = max(1, int(frame_size))
    for start in range(0, len(samples), size):
        yield samples[start : start + size]


def mux(samples: np.ndarray, sample_rate: int, channels: int) -> bytes:
    """Wrap int16 PCM in a canonical 44-byte-header WAV container."""
    if int(sample_rate) <= 0:
        raise CodecError(f"invalid sample rate: {sample_rate}")
    if int(channels) <= 0:
        raise CodecError(f"invalid channel count: {channels}")
    payload = as_int16(samples).astype("<i2", copy=False).tobytes()
    block_align = int(channels) * BYTES_PER_SAMPLE
    header = _WAV_HEADER.pack(
        b"RIFF",
        36 + len(payload),
        b"WAVE",
        b"fmt ",
        16,
        PCM_FORMAT_TAG,
        int(channels),
        int(sample_rate),
        int(sample_rate) * block_align,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        len(payload),
    )
    return header + payload


def demux(data: bytes) -> PcmStream:
    """Decode a 16-bit PCM WAV container back to samples."""
    if len(data) < 12 or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise CodecError("not a RIFF/WAVE container")
    offset = 12
    channels = 0
    sample_rate = 0
    payload: bytes | None = None
    while offset + 8 <= len(data):
        chunk_id = data[offset : offset + 4]
        (chunk_len,) = struct.unpack_from("<I", data, offset + 4)
        body_start = offset + 8
        body_end = min(len(data), body_start + chunk_len)
        if chunk_id == b"fmt ":
            if chunk_len < 16:
                raise CodecError("truncated fmt chunk")
            format_tag, channels, sample_rate, _byte_rate, _align, bits = struct.unpack_from(
                "<HHIIHH", data, body_start
            )
            if format_tag != PCM_FORMAT_TAG or bits != BITS_PER_SAMPLE:
                raise CodecError(f"unsupported WAV encoding (format={format_tag}, bits={bits})")
        elif chunk_id == b"data":
            payload = data[body_start:body_end]
            break
        offset = body_start + chunk_len + (chunk_len % 2)
    if payload is None or not channels or not sample_rate:
        raise CodecError("WAV container is missing fmt or data chunk")
    usable = len(payload) - (len(payload) % BYTES_PER_SAMPLE)
    samples = np.frombuffer(payload[:usable], dtype="<i2").astype(np.int16)
    return PcmStream(samples=samples, sample_rate=int(sample_rate), channels=int(channels))


def concat(artifacts: Sequence[object]) -> PcmStream:
    """Concatenate artifacts (anything with samples/sample_rate/channels) in order.

    Sample rates must match. Mixed channel layouts are down-mixed to mono
    before joining.
    """
    if not artifacts:
        raise ValueError("concat requires at least one artifact")
    rates = {int(getattr(a, "sample_rate")) for a in artifacts}
    if len(rates) != 1:
        raise ValueError(f"cannot concatenate mixed sample rates: {sorted(rates)}")
    channel_counts = {int(getattr(a, "channels")) for a in artifacts}
    if len(channel_counts) == 1:
        channels = channel_counts.pop()
        parts = [as_int16(getattr(a, "samples")) for a in artifacts]
    else:
        channels = 1
        parts = [downmix_to_mono(getattr(a, "samples"), int(getattr(a, "channels"))) for a in artifacts]
    samples = np.concatenate(parts) if len(parts) > 1 else parts[0]
    return PcmStream(samples=samples, sample_rate=rates.pop(), channels=channels)


@runtime_checkable
class CodecBackend(Protocol):
    """Lossy encoder contract; implementations live in `codec_backends`."""

    name: str

    def check_dependencies(self) -> None:
        ...

    def encode_mp3(
        self,
        samples: np.ndarray,
        *,
        sample_rate: int,
        bitrate_kbps: int,
        target_sample_rate: int,
        workspace: "TempWorkspace | None" = None,
    ) -> bytes:
        ...


@dataclass
class AudioCodec:
    """Format-level entry point used by the merger."""

    backend: CodecBackend
    logger: Logger
    mp3_sample_rate: int = 24000

    def mux(self, samples: np.ndarray, sample_rate: int, channels: int) -> bytes:
        return mux(samples, sample_rate, channels)

    def concat(self, artifacts: Sequence[object]) -> PcmStream:
        return concat(artifacts)

    def encode(
        self,
        samples: np.ndarray,
        sample_rate: int,
        channels: int,
        target_format: str,
        bitrate: int,
        *,
        workspace: "TempWorkspace | None" = None,
    ) -> bytes:
        """Encode PCM to `wav` or `mp3`; mp3 is always mono at the configured rate."""
        fmt = str(target_format or "").strip().lower()
        if fmt == "wav":
            return mux(samples, sample_rate, channels)
        if fmt != "mp3":
            raise CodecError(f"unsupported target format: {target_format}")
        mono = downmix_to_mono(samples, channels)
        try:
            data = self.backend.encode_mp3(
                mono,
                sample_rate=int(sample_rate),
                bitrate_kbps=int(bitrate),
                target_sample_rate=int(self.mp3_sample_rate),
                workspace=workspace,
            )
        except EncodingError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise EncodingError(f"{self.backend.name} mp3 encoding failed: {exc}") from exc
        if not data:
            raise EncodingError(f"{self.backend.name} produced empty mp3 output")
        self.logger.debug(
            "codec_mp3_encoded",
            backend=self.backend.name,
            input_samples=int(len(mono)),
            output_bytes=len(data),
            bitrate_kbps=int(bitrate),
        )
        return data
