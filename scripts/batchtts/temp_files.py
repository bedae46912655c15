#!/usr/bin/env python3
from __future__ import annotations

"""Request-scoped temporary files.

Every temp file a request creates is registered with a `TempWorkspace` and
removed when the workspace scope exits, whichever way it exits. The janitor
sweep in `housekeeping` is only a backstop for files orphaned by a crashed
process.
"""

import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from .logging_utils import Logger


@dataclass(frozen=True)
class TempFileHandle:
    path: str
    created_at: float


@dataclass
class TempWorkspace:
    """Scoped owner of the temp files created by one request."""

    base_dir: str
    logger: Logger
    prefix: str = "batch"
    token: str = field(default_factory=lambda: f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}")
    _handles: List[TempFileHandle] = field(default_factory=list, repr=False)
    _counter: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __enter__(self) -> "TempWorkspace":
        os.makedirs(self.base_dir, exist_ok=True)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.release()

    @property
    def handles(self) -> List[TempFileHandle]:
        with self._lock:
            return list(self._handles)

    def create(self, suffix: str, *, label: str = "") -> TempFileHandle:
        """Reserve a unique path inside the workspace and register it for release."""
        with self._lock:
            self._counter += 1
            tag = f"_{label}" if label else ""
            name = f"{self.prefix}_{self.token}_{self._counter:04d}{tag}{suffix}"
            handle = TempFileHandle(path=os.path.join(self.base_dir, name), created_at=time.time())
            self._handles.append(handle)
        return handle

    def write_bytes(self, data: bytes, suffix: str, *, label: str = "") -> TempFileHandle:
        handle = self.create(suffix, label=label)
        tmp = f"{handle.path}.part"
        try:
            with open(tmp, "wb") as f:
                f.write(data)
            os.replace(tmp, handle.path)
        except OSError:
            self._discard(tmp)
            raise
        return handle

    def read_bytes(self, handle: TempFileHandle) -> bytes:
        with open(handle.path, "rb") as f:
            return f.read()

    def _discard(self, path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            self.logger.warn("temp_file_remove_failed", path=path, error=str(exc))
            return False

    def release(self, handle: Optional[TempFileHandle] = None) -> int:
        """Delete one handle, or every registered handle when none is given."""
        with self._lock:
            if handle is None:
                targets = list(self._handles)
                self._handles.clear()
            else:
                targets = [h for h in self._handles if h.path == handle.path]
                self._handles = [h for h in self._handles if h.path != handle.path]
        removed = 0
        for target in targets:
            for path in (target.path, f"{target.path}.part"):
                if self._discard(path):
                    removed += 1
        if targets and handle is None:
            self.logger.debug("temp_workspace_released", token=self.token, files=len(targets), removed=removed)
        return removed
