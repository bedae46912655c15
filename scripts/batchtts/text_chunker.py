#!/usr/bin/env python3
from __future__ import annotations

"""Deterministic sentence-aware text chunking for batch synthesis.

Paragraphs are separated by blank lines and sentences by terminal
punctuation. Sentences are packed greedily into chunks bounded by a character
budget; a paragraph boundary inside a chunk becomes a single line break.
Re-chunking the newline-joined output with the same budget reproduces the same
boundaries.
"""

import math
import re
from dataclasses import dataclass
from typing import List, Sequence, Tuple

TERMINAL_PUNCTUATION = (".", "!", "?")

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

# Rough per-chunk figures used for the pre-run summary.
SECONDS_PER_CHUNK = 3
MEGABYTES_PER_CHUNK = {"mp3": 1.5, "wav": 3.0}


@dataclass(frozen=True)
class TextChunk:
    index: int
    text: str


@dataclass(frozen=True)
class ChunkPlanEstimate:
    chunks: int
    characters: int
    estimated_seconds: int
    estimated_megabytes: float


def _ends_with_terminal(text: str) -> bool:
    return text.endswith(TERMINAL_PUNCTUATION)


def _close_chunk(text: str) -> str:
    """Re-append terminal punctuation dropped at a chunk boundary."""
    stripped = text.strip()
    return stripped if _ends_with_terminal(stripped) else f"{stripped}."


def _split_long_sentence(sentence: str, max_chars: int) -> List[str]:
    """Split an oversize sentence at commas or spaces before hard cuts.

    Pieces are kept one character under the budget so a closing period still
    fits.
    """
    out: List[str] = []
    remaining = sentence.strip()
    safe_max = max(1, int(max_chars) - 1)
    while len(remaining) > safe_max:
        window = remaining[: safe_max + 1]
        cut_idx = -1
        for match in re.finditer(r"[,;:](?=\s|$)", window):
            if match.end() >= int(safe_max * 0.45):
                cut_idx = match.end()
        if cut_idx < 0:
            fallback_space = window.rfind(" ")
            if fallback_space >= int(safe_max * 0.60):
                cut_idx = fallback_space
        if cut_idx <= 0:
            cut_idx = safe_max
        piece = remaining[:cut_idx].strip()
        if piece:
            out.append(piece)
        remaining = remaining[cut_idx:].strip()
    if remaining:
        out.append(remaining)
    return out


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text or "") if p.strip()]


def split_sentences(paragraph: str) -> List[str]:
    """Split one paragraph into whitespace-normalized sentences."""
    out: List[str] = []
    for raw in _SENTENCE_SPLIT_RE.split(paragraph):
        sentence = " ".join(raw.split())
        if sentence:
            out.append(sentence)
    return out


def _sentence_units(
    paragraphs: Sequence[str],
    *,
    max_chunk_chars: int,
    hard_split: bool,
) -> List[Tuple[str, bool, bool]]:
    """Flatten paragraphs into `(text, starts_paragraph, is_fragment)` units."""
    units: List[Tuple[str, bool, bool]] = []
    for paragraph in paragraphs:
        first = True
        for sentence in split_sentences(paragraph):
            if hard_split and len(sentence) > max_chunk_chars:
                pieces = _split_long_sentence(sentence, max_chunk_chars)
                for pos, piece in enumerate(pieces):
                    units.append((piece, first, pos < len(pieces) - 1))
                    first = False
                continue
            units.append((sentence, first, False))
            first = False
    return units


def chunk_text(text: str, max_chunk_chars: int, *, hard_split: bool = False) -> List[TextChunk]:
    """Split text into ordered chunks no longer than `max_chunk_chars`.

    A single sentence longer than the budget is kept whole (text without
    sentence punctuation therefore yields one chunk per paragraph) unless
    `hard_split` is set, in which case it is cut on word boundaries.
    """
    if int(max_chunk_chars) < 1:
        raise ValueError("max_chunk_chars must be >= 1")
    budget = int(max_chunk_chars)
    units = _sentence_units(split_paragraphs(text), max_chunk_chars=budget, hard_split=hard_split)

    texts: List[str] = []
    current = ""
    current_is_fragment = False
    for sentence, starts_paragraph, is_fragment in units:
        if not current:
            current, current_is_fragment = sentence, is_fragment
            continue
        separator = "\n" if starts_paragraph else " "
        candidate = f"{current}{separator}{sentence}"
        closing_len = len(candidate) + (0 if _ends_with_terminal(candidate) or is_fragment else 1)
        if closing_len > budget:
            texts.append(current.strip() if current_is_fragment else _close_chunk(current))
            current, current_is_fragment = sentence, is_fragment
        else:
            current, current_is_fragment = candidate, is_fragment
    if current.strip():
        texts.append(_close_chunk(current))
    return [TextChunk(index=idx, text=value) for idx, value in enumerate(texts)]


def join_chunks(chunks: Sequence[TextChunk]) -> str:
    """Rejoin chunk texts in index order."""
    return "\n".join(chunk.text for chunk in sorted(chunks, key=lambda c: c.index))


def estimate_batch(chunks: Sequence[TextChunk], output_format: str = "mp3") -> ChunkPlanEstimate:
    """Rough duration/size figures shown before a run starts."""
    per_chunk_mb = MEGABYTES_PER_CHUNK.get(str(output_format or "").lower(), MEGABYTES_PER_CHUNK["wav"])
    count = len(chunks)
    return ChunkPlanEstimate(
        chunks=count,
        characters=sum(len(chunk.text) for chunk in chunks),
        estimated_seconds=int(math.ceil(count * SECONDS_PER_CHUNK)),
        estimated_megabytes=round(count * per_chunk_mb, 1),
    )
