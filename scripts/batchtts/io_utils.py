#!/usr/bin/env python3
from __future__ import annotations

"""I/O helpers shared by pipeline entrypoints."""

import json
import os
from typing import Callable, Dict, Optional, Tuple


def read_text_file_with_fallback(
    path: str,
    *,
    on_fallback: Optional[Callable[[str], None]] = None,
) -> Tuple[str, str]:
    """Read text file trying a safe sequence of fallback encodings.

    Returns `(content, encoding_used)`.
    """
    encodings = ["utf-8", "utf-8-sig", "cp1252", "latin-1"]
    last_exc: Exception | None = None
    for enc in encodings:
        try:
            with open(path, "r", encoding=enc) as f:
                data = f.read()
            if enc != "utf-8" and on_fallback is not None:
                on_fallback(enc)
            return data, enc
        except UnicodeDecodeError as exc:
            last_exc = exc
            continue
    raise RuntimeError(f"Failed to decode input file with supported encodings: {last_exc}")


def _discard_tmp(tmp: str) -> None:
    try:
        if os.path.exists(tmp):
            os.remove(tmp)
    except OSError:
        pass


def write_bytes_atomic(path: str, data: bytes) -> str:
    """Write bytes through a sibling `.tmp` file and rename into place."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = f"{path}.tmp"
    try:
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except Exception:
        _discard_tmp(tmp)
        raise
    return path


def write_json_atomic(path: str, payload: Dict[str, object]) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = f"{path}.tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, sort_keys=True)
            f.write("\n")
        os.replace(tmp, path)
    except Exception:
        _discard_tmp(tmp)
        raise
    return path
