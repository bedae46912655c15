#!/usr/bin/env python3
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

DEFAULT_VOICE_ID = "af_sky"


@dataclass(frozen=True)
class Voice:
    id: str
    name: str
    gender: str
    accent: str
    language: str = "en"
    description: str = ""

    @property
    def category(self) -> str:
        return f"{self.accent}_{self.gender}"


AVAILABLE_VOICES: List[Voice] = [
    Voice("af_sky", "Sky", "female", "american", description="Clear, friendly American female voice"),
    Voice("af_bella", "Bella", "female", "american", description="Warm, expressive American female voice"),
    Voice("af_nicole", "Nicole", "female", "american", description="Professional American female voice"),
    Voice("af_sarah", "Sarah", "female", "american", description="Gentle, conversational American female voice"),
    Voice("am_adam", "Adam", "male", "american", description="Confident American male voice"),
    Voice("am_michael", "Michael", "male", "american", description="Deep, authoritative American male voice"),
    Voice("bf_emma", "Emma", "female", "british", description="Elegant British female voice"),
    Voice("bf_isabella", "Isabella", "female", "british", description="Sophisticated British female voice"),
    Voice("bm_george", "George", "male", "british", description="Distinguished British male voice"),
    Voice("bm_lewis", "Lewis", "male", "british", description="Clear, articulate British male voice"),
]

_VOICES_BY_ID: Dict[str, Voice] = {voice.id: voice for voice in AVAILABLE_VOICES}


def find_voice(voice_id: str) -> Optional[Voice]:
    return _VOICES_BY_ID.get(str(voice_id or "").strip())


def voices_by_category() -> Dict[str, List[Voice]]:
    """Group the catalog as `american_female`, `british_male`, ..."""
    out: Dict[str, List[Voice]] = {}
    for voice in AVAILABLE_VOICES:
        out.setdefault(voice.category, []).append(voice)
    return out


def resolve_voice_id(voice_id: Optional[str], *, default: str = DEFAULT_VOICE_ID) -> str:
    """Return the requested id, or the default when blank.

    Voice ids are opaque to the pipeline; ids outside the catalog are passed
    through for backends with their own voices.
    """
    candidate = str(voice_id or "").strip()
    return candidate or (str(default or "").strip() or DEFAULT_VOICE_ID)
