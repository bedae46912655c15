#!/usr/bin/env python3
from __future__ import annotations

"""Disk-space checks and age-based sweeping of orphaned temp files."""

import os
import shutil
import threading
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from .logging_utils import Logger


@dataclass
class SweepReport:
    """Summary stats returned by one janitor sweep."""

    deleted_files: int = 0
    deleted_bytes: int = 0
    kept_files: int = 0
    vanished_files: int = 0
    failed_files: int = 0


def ensure_min_free_disk(path: str, min_free_mb: int) -> None:
    """Raise when free disk space is below required threshold."""
    if int(min_free_mb) <= 0:
        return
    existing = path
    while existing and not os.path.exists(existing):
        parent = os.path.dirname(existing)
        if parent == existing:
            break
        existing = parent
    usage = shutil.disk_usage(existing or ".")
    free_mb = usage.free // (1024 * 1024)
    if free_mb < min_free_mb:
        raise RuntimeError(
            f"Not enough free disk space: {free_mb}MB available, {min_free_mb}MB required"
        )


def _iter_files(base_dir: str) -> Iterable[str]:
    """Yield files recursively under base dir."""
    if not os.path.isdir(base_dir):
        return
    for root, _, files in os.walk(base_dir):
        for name in files:
            yield os.path.join(root, name)


def sweep_temp_dir(
    base_dir: str,
    max_age_minutes: float,
    logger: Logger,
    *,
    now: Optional[float] = None,
) -> SweepReport:
    """Delete every file under `base_dir` whose mtime is older than the limit.

    Age is the only eviction key. Files that disappear mid-sweep (a request
    released them first) are counted as vanished; any other filesystem error
    is logged and the sweep moves on. Never raises.
    """
    report = SweepReport()
    if not os.path.isdir(base_dir):
        return report
    cutoff_s = max(0.0, float(max_age_minutes)) * 60.0
    current = time.time() if now is None else float(now)
    try:
        files = list(_iter_files(base_dir))
    except OSError as exc:
        logger.warn("janitor_scan_failed", base_dir=base_dir, error=str(exc))
        return report

    for path in files:
        try:
            st = os.stat(path)
        except FileNotFoundError:
            report.vanished_files += 1
            continue
        except OSError as exc:
            report.failed_files += 1
            logger.warn("janitor_stat_failed", path=path, error=str(exc))
            continue
        age = current - st.st_mtime
        if age <= cutoff_s:
            report.kept_files += 1
            continue
        try:
            os.remove(path)
        except FileNotFoundError:
            report.vanished_files += 1
            continue
        except OSError as exc:
            report.failed_files += 1
            logger.warn("janitor_delete_failed", path=path, error=str(exc))
            continue
        report.deleted_files += 1
        report.deleted_bytes += int(st.st_size)
        logger.debug("janitor_deleted_file", path=path, age_s=int(age))

    logger.info(
        "janitor_sweep_done",
        base_dir=base_dir,
        deleted_files=report.deleted_files,
        deleted_bytes=report.deleted_bytes,
        kept_files=report.kept_files,
        vanished_files=report.vanished_files,
        failed_files=report.failed_files,
    )
    return report


def _sweep_quietly(base_dir: str, max_age_minutes: float, logger: Logger) -> None:
    try:
        sweep_temp_dir(base_dir, max_age_minutes, logger)
    except Exception as exc:  # noqa: BLE001
        logger.error("janitor_sweep_failed", base_dir=base_dir, error=str(exc))


def sweep_in_background(base_dir: str, max_age_minutes: float, logger: Logger) -> threading.Thread:
    """Start one sweep on a daemon thread and return immediately."""
    thread = threading.Thread(
        target=_sweep_quietly,
        args=(base_dir, max_age_minutes, logger),
        name="temp-janitor",
        daemon=True,
    )
    thread.start()
    return thread


@dataclass
class PeriodicJanitor:
    """Sweep `base_dir` every `interval_seconds` on a daemon thread."""

    base_dir: str
    max_age_minutes: float
    interval_seconds: float
    logger: Logger

    def __post_init__(self) -> None:
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop.is_set():
            _sweep_quietly(self.base_dir, self.max_age_minutes, self.logger)
            if self._stop.wait(max(0.01, float(self.interval_seconds))):
                break

    def start(self) -> "PeriodicJanitor":
        if self.running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="temp-janitor-periodic", daemon=True)
        self._thread.start()
        self.logger.info(
            "janitor_started",
            base_dir=self.base_dir,
            interval_s=self.interval_seconds,
            max_age_minutes=self.max_age_minutes,
        )
        return self

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        self._thread = None

    def __enter__(self) -> "PeriodicJanitor":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.stop()
