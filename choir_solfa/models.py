from __future__ import annotations

import re
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator


VoiceName = Literal["soprano", "alto", "tenor", "bass"]
Difficulty = Literal["beginner", "intermediate", "advanced"]
NotationSource = Literal["external", "fallback"]

VALID_TONICS = {"C", "C#", "Db", "D", "D#", "Eb", "E", "F", "F#", "Gb", "G", "G#", "Ab", "A", "A#", "Bb", "B"}


DEFAULT_KEY = "C"
DEFAULT_TEMPO = 120.0
DEFAULT_STYLE = "traditional"
TEMPO_RANGE = (40.0, 208.0)

_KEY_RE = re.compile(r"([A-Ga-g])\s*([#b♯♭]?)\s*(m|min|minor|maj|major)?", re.IGNORECASE)


def normalize_key(value: object) -> str:
    """Normalize key names like ``d minor`` or ``Bb major`` to ``Dm``/``Bb``; other text is kept as given."""
    if not isinstance(value, str):
        return DEFAULT_KEY
    cleaned = " ".join(value.split())
    if not cleaned:
        return DEFAULT_KEY
    m = _KEY_RE.fullmatch(cleaned)
    if not m:
        return cleaned
    accidental = {"♯": "#", "♭": "b"}.get(m.group(2), m.group(2))
    tonic = f"{m.group(1).upper()}{accidental}"
    if tonic not in VALID_TONICS:
        return cleaned
    quality = (m.group(3) or "").lower()
    suffix = "m" if quality in {"m", "min", "minor"} and m.group(3) != "M" else ""
    return f"{tonic}{suffix}"


class GenerationOptions(BaseModel):
    """Advisory hints forwarded to the completion service; the fallback ignores them.

    Unusable key, tempo or style values fall back to their defaults instead of
    failing the request. Only ``difficulty`` is checked strictly.
    """

    key: str = DEFAULT_KEY
    tempo: float = DEFAULT_TEMPO
    style: str = DEFAULT_STYLE
    difficulty: Difficulty = "intermediate"

    @field_validator("key", mode="before")
    @classmethod
    def coerce_key(cls, value: object) -> str:
        return normalize_key(value)

    @field_validator("tempo", mode="before")
    @classmethod
    def coerce_tempo(cls, value: object) -> float:
        if isinstance(value, bool):
            return DEFAULT_TEMPO
        try:
            tempo = float(value)
        except (TypeError, ValueError):
            return DEFAULT_TEMPO
        lo, hi = TEMPO_RANGE
        if not lo <= tempo <= hi:
            return DEFAULT_TEMPO
        return tempo

    @field_validator("style", mode="before")
    @classmethod
    def coerce_style(cls, value: object) -> str:
        if not isinstance(value, str) or not value.strip():
            return DEFAULT_STYLE
        return value.strip()[:120]


class SolfaGenerationRequest(BaseModel):
    lyrics: str
    voice_parts: list[VoiceName] = Field(
        default_factory=list,
        validation_alias=AliasChoices("voice_parts", "voiceParts"),
    )
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class SolfaGenerationResponse(BaseModel):
    notations: dict[VoiceName, list[str]]
    source: NotationSource
    word_count: int = Field(ge=0)
    warnings: list[str] = Field(default_factory=list)


class NotationValidationRequest(BaseModel):
    notations: dict[str, list[str]]
    lyrics: str | None = None


class NoteConversionRequest(BaseModel):
    notes: list[str] = Field(default_factory=list)


class NoteConversionResponse(BaseModel):
    solfa: list[str]


class VoicePartInfo(BaseModel):
    name: VoiceName
    color: str
    lowest: str
    highest: str
    phase_offset: int = Field(ge=0)
