#!/usr/bin/env python3
from __future__ import annotations

"""Group synthesized chunks into size-bounded output files.

Artifacts are packed greedily in chunk order without ever splitting one.
Each group is concatenated, spilled to a request-scoped WAV temp file and
encoded to the target format. An encoder fault degrades that group to WAV; a
filesystem or codec fault, including too little free disk for the spill,
drops only that group.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .codec import AudioCodec, PcmStream, as_int16
from .config import OUTPUT_FORMATS
from .errors import CodecError, EncodingError, MergeIOError
from .housekeeping import ensure_min_free_disk
from .logging_utils import Logger
from .synthesis import AudioArtifact
from .temp_files import TempWorkspace


@dataclass
class BatchGroup:
    group_index: int
    artifacts: List[AudioArtifact] = field(default_factory=list)

    @property
    def estimated_bytes(self) -> int:
        return sum(int(a.size_bytes) for a in self.artifacts)

    @property
    def chunk_indexes(self) -> List[int]:
        return [a.chunk_index for a in self.artifacts]


@dataclass
class OutputFile:
    filename: str
    format: str
    size_bytes: int
    data: bytes = field(repr=False)
    group_index: int = 0
    chunk_indexes: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class BatchError:
    group_index: int
    message: str
    chunk_indexes: tuple = ()


@dataclass
class MergeResult:
    files: List[OutputFile] = field(default_factory=list)
    errors: List[BatchError] = field(default_factory=list)
    cancelled: bool = False


def plan_groups(artifacts: Sequence[AudioArtifact], max_batch_bytes: int) -> List[BatchGroup]:
    """Pack artifacts in chunk order while the running size stays within bound.

    An artifact larger than the bound forms a group on its own.
    """
    if int(max_batch_bytes) < 1:
        raise ValueError("max_batch_bytes must be >= 1")
    groups: List[BatchGroup] = []
    current = BatchGroup(group_index=1)
    current_bytes = 0
    for artifact in sorted(artifacts, key=lambda a: a.chunk_index):
        size = int(artifact.size_bytes)
        if current.artifacts and current_bytes + size > max_batch_bytes:
            groups.append(current)
            current = BatchGroup(group_index=len(groups) + 1)
            current_bytes = 0
        current.artifacts.append(artifact)
        current_bytes += size
    if current.artifacts:
        groups.append(current)
    return groups


def output_filename(basename: str, group_index: int, fmt: str) -> str:
    return f"{basename}_part_{int(group_index)}.{fmt}"


@dataclass
class BatchMerger:
    codec: AudioCodec
    logger: Logger
    temp_dir: str
    min_free_disk_mb: int = 0

    def _group_stream(self, group: BatchGroup) -> PcmStream:
        if len(group.artifacts) == 1:
            only = group.artifacts[0]
            return PcmStream(samples=as_int16(only.samples), sample_rate=only.sample_rate, channels=only.channels)
        try:
            return self.codec.concat(group.artifacts)
        except ValueError as exc:
            raise CodecError(f"group {group.group_index} cannot be concatenated: {exc}") from exc

    def _merge_group(
        self,
        group: BatchGroup,
        *,
        output_format: str,
        bitrate: int,
        basename: str,
        workspace: TempWorkspace,
    ) -> OutputFile:
        stream = self._group_stream(group)
        wav = self.codec.mux(stream.samples, stream.sample_rate, stream.channels)
        try:
            ensure_min_free_disk(workspace.base_dir, self.min_free_disk_mb)
        except (OSError, RuntimeError) as exc:
            raise MergeIOError(f"group {group.group_index}: {exc}", group_index=group.group_index) from exc
        try:
            spill = workspace.write_bytes(wav, ".wav", label=f"group{group.group_index}")
        except OSError as exc:
            raise MergeIOError(
                f"could not spill group {group.group_index} to {workspace.base_dir}: {exc}",
                group_index=group.group_index,
            ) from exc
        try:
            fmt = output_format
            if fmt == "wav":
                data = wav
            else:
                try:
                    data = self.codec.encode(
                        stream.samples,
                        stream.sample_rate,
                        stream.channels,
                        fmt,
                        bitrate,
                        workspace=workspace,
                    )
                except EncodingError as exc:
                    self.logger.warn(
                        "batch_encoding_fallback_wav",
                        group_index=group.group_index,
                        target_format=fmt,
                        error=str(exc),
                    )
                    fmt = "wav"
                    data = workspace.read_bytes(spill)
        finally:
            workspace.release(spill)
        return OutputFile(
            filename=output_filename(basename, group.group_index, fmt),
            format=fmt,
            size_bytes=len(data),
            data=data,
            group_index=group.group_index,
            chunk_indexes=group.chunk_indexes,
        )

    def merge(
        self,
        artifacts: Sequence[AudioArtifact],
        max_batch_bytes: int,
        output_format: str,
        bitrate: int,
        *,
        cancel_check: Optional[Callable[[], bool]] = None,
        basename: str = "audio",
    ) -> MergeResult:
        fmt = str(output_format or "").strip().lower()
        if fmt not in OUTPUT_FORMATS:
            raise ValueError(f"unsupported output format: {output_format}")
        groups = plan_groups(artifacts, max_batch_bytes)
        result = MergeResult()
        if not groups:
            return result
        self.logger.info(
            "merge_start",
            groups=len(groups),
            artifacts=len(artifacts),
            max_batch_bytes=int(max_batch_bytes),
            output_format=fmt,
        )
        with TempWorkspace(base_dir=self.temp_dir, logger=self.logger, prefix="merge") as workspace:
            for group in groups:
                if cancel_check is not None and cancel_check():
                    result.cancelled = True
                    self.logger.warn("merge_cancelled", next_group=group.group_index, written=len(result.files))
                    break
                try:
                    output = self._merge_group(
                        group,
                        output_format=fmt,
                        bitrate=bitrate,
                        basename=basename,
                        workspace=workspace,
                    )
                except (OSError, CodecError, MergeIOError) as exc:
                    result.errors.append(
                        BatchError(
                            group_index=group.group_index,
                            message=str(exc) or type(exc).__name__,
                            chunk_indexes=tuple(group.chunk_indexes),
                        )
                    )
                    self.logger.error(
                        "batch_merge_failed",
                        group_index=group.group_index,
                        chunks=group.chunk_indexes,
                        error=str(exc),
                    )
                    continue
                result.files.append(output)
                self.logger.info(
                    "batch_written",
                    group_index=group.group_index,
                    filename=output.filename,
                    format=output.format,
                    size_bytes=output.size_bytes,
                    chunks=len(output.chunk_indexes),
                )
        return result
