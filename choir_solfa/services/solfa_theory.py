from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

from choir_solfa.models import VoiceName

SOLFA_SYLLABLES: tuple[str, ...] = ("do", "re", "mi", "fa", "sol", "la", "ti")
SYLLABLE_INDEX = {syllable: idx for idx, syllable in enumerate(SOLFA_SYLLABLES)}

VOICE_PARTS: tuple[VoiceName, ...] = ("soprano", "alto", "tenor", "bass")

LETTER_TO_SOLFA = {
    "C": "do",
    "D": "re",
    "E": "mi",
    "F": "fa",
    "G": "sol",
    "A": "la",
    "B": "ti",
}

VOICE_PART_COLORS = {
    "soprano": "#FF6B6B",
    "alto": "#4ECDC4",
    "tenor": "#45B7D1",
    "bass": "#96CEB4",
}

# Word-index phase per part; all distinct mod 7 so word 0 never sounds in unison.
PHASE_OFFSETS = {
    "soprano": 0,
    "alto": 2,
    "tenor": 4,
    "bass": 6,
}

# Lowest/highest syllable per part as sung in the choir's reference key.
VOICE_RANGE_SYLLABLES = {
    "soprano": ("do", "la"),  # C4 - A5
    "alto": ("sol", "mi"),  # G3 - E5
    "tenor": ("do", "sol"),  # C3 - G4
    "bass": ("mi", "do"),  # E2 - C4
}

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_syllable(token: str) -> str:
    return token.strip().lower()


def tokenize_lyrics(text: str) -> list[str]:
    return [word for word in _WHITESPACE_RE.split(text) if word]


@dataclass(frozen=True)
class VoiceRange:
    low: int
    high: int

    def __post_init__(self) -> None:
        if self.low > self.high:
            low, high = self.high, self.low
            object.__setattr__(self, "low", low)
            object.__setattr__(self, "high", high)

    @classmethod
    def from_syllables(cls, lowest: str, highest: str) -> "VoiceRange":
        return cls(SYLLABLE_INDEX[normalize_syllable(lowest)], SYLLABLE_INDEX[normalize_syllable(highest)])

    def contains(self, index: int) -> bool:
        return self.low <= index <= self.high

    @property
    def lowest(self) -> str:
        return SOLFA_SYLLABLES[self.low]

    @property
    def highest(self) -> str:
        return SOLFA_SYLLABLES[self.high]


def _frozen(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class NotationTables:
    """Immutable lookup tables shared by the fallback generator and the validators.

    Inverted range pairs (highest below lowest by index) are reordered by
    ``VoiceRange`` so every range is a closed, non-wrapping interval.
    """

    syllables: tuple[str, ...] = SOLFA_SYLLABLES
    phase_offsets: Mapping[str, int] = field(default_factory=lambda: _frozen(PHASE_OFFSETS))
    ranges: Mapping[str, VoiceRange] = field(
        default_factory=lambda: _frozen(
            {part: VoiceRange.from_syllables(lo, hi) for part, (lo, hi) in VOICE_RANGE_SYLLABLES.items()}
        )
    )
    colors: Mapping[str, str] = field(default_factory=lambda: _frozen(VOICE_PART_COLORS))

    def __post_init__(self) -> None:
        for name in ("phase_offsets", "ranges", "colors"):
            value = getattr(self, name)
            if not isinstance(value, MappingProxyType):
                object.__setattr__(self, name, _frozen(value))
        missing = [part for part in VOICE_PARTS if part not in self.phase_offsets or part not in self.ranges]
        if missing:
            raise ValueError(f"Notation tables are missing voice parts: {missing}.")

    def syllable_for(self, word_index: int, part: str) -> str:
        return self.syllables[(word_index + self.phase_offsets[part]) % len(self.syllables)]


DEFAULT_TABLES = NotationTables()


def is_voice_part(value: object) -> bool:
    return isinstance(value, str) and value in VOICE_PARTS


def ordered_parts(parts: Iterable[str]) -> list[VoiceName]:
    requested = set(parts)
    return [part for part in VOICE_PARTS if part in requested]


def convert_note_to_solfa(note: str) -> str:
    """Map a letter name (C..B) to its fixed-do syllable, leaving anything else untouched."""
    return LETTER_TO_SOLFA.get(note.strip().upper(), note)


def convert_to_solfa(notes: Iterable[str]) -> list[str]:
    return [convert_note_to_solfa(note) for note in notes]
