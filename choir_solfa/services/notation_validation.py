from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from choir_solfa.models import normalize_key
from choir_solfa.services.solfa_theory import (
    DEFAULT_TABLES,
    SOLFA_SYLLABLES,
    SYLLABLE_INDEX,
    VOICE_PARTS,
    NotationTables,
    VoiceRange,
    normalize_syllable,
)

_SYLLABLE_SET = frozenset(SOLFA_SYLLABLES)


class InvalidArgumentError(ValueError):
    pass


@dataclass
class NotationDiagnostics:
    fatal: list[str]
    warnings: list[str]

    @property
    def valid(self) -> bool:
        return not self.fatal


def validate_syllable_set(sequence: Iterable[Any]) -> bool:
    return all(isinstance(token, str) and token.casefold() in _SYLLABLE_SET for token in sequence)


def validate_voice_range(
    sequence: Iterable[Any],
    part: str,
    ranges: Mapping[str, VoiceRange] | None = None,
) -> bool:
    table = ranges if ranges is not None else DEFAULT_TABLES.ranges
    if part not in table:
        raise InvalidArgumentError(f"Unknown voice part '{part}'.")
    bound = table[part]
    for token in sequence:
        if not isinstance(token, str):
            return False
        index = SYLLABLE_INDEX.get(token.casefold())
        if index is None or not bound.contains(index):
            return False
    return True


def validate_notation_diagnostics(
    payload: Any,
    word_count: int,
    tables: NotationTables = DEFAULT_TABLES,
    expected_key: str | None = None,
) -> NotationDiagnostics:
    """Check a completion-service payload against the four-part notation contract.

    All four voice parts must be present regardless of which ones the caller
    asked for; a single failing part makes the whole payload unusable.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not isinstance(payload, Mapping):
        return NotationDiagnostics(fatal=[f"Response must be an object, got {type(payload).__name__}."], warnings=[])

    for part in VOICE_PARTS:
        if part not in payload:
            errors.append(f"Response is missing voice part {part}.")
            continue
        sequence = payload[part]
        if not isinstance(sequence, list) or not all(isinstance(token, str) for token in sequence):
            errors.append(f"Voice part {part} must be a list of syllable strings.")
            continue
        if len(sequence) != word_count:
            errors.append(f"Voice part {part} has {len(sequence)} syllables; expected {word_count}.")
        if not validate_syllable_set(sequence):
            invalid = sorted({token for token in sequence if token.casefold() not in _SYLLABLE_SET})
            errors.append(f"Voice part {part} uses tokens outside the solfa set: {invalid}.")
            continue
        if not validate_voice_range(sequence, part, tables.ranges):
            bound = tables.ranges[part]
            errors.append(f"Voice part {part} leaves its range {bound.lowest}-{bound.highest}.")

    if expected_key is not None and "key" in payload and normalize_key(payload["key"]) != normalize_key(expected_key):
        warnings.append(f"Echoed key {payload['key']!r} differs from requested key {expected_key!r}.")

    return NotationDiagnostics(fatal=errors, warnings=warnings)


def validate_request_notations(
    notations: Mapping[str, list[str]],
    word_count: int | None = None,
    tables: NotationTables = DEFAULT_TABLES,
) -> NotationDiagnostics:
    """Check a caller-supplied notation mapping that may hold any subset of parts.

    Range departures are reported as warnings here; hand-edited notation may
    deliberately stretch a part.
    """
    errors: list[str] = []
    warnings: list[str] = []
    for part, sequence in notations.items():
        if part not in VOICE_PARTS:
            errors.append(f"Unknown voice part {part}.")
            continue
        if word_count is not None and len(sequence) != word_count:
            errors.append(f"Voice part {part} has {len(sequence)} syllables; expected {word_count}.")
        if not validate_syllable_set(sequence):
            errors.append(f"Voice part {part} uses tokens outside the solfa set.")
        elif not validate_voice_range(sequence, part, tables.ranges):
            bound = tables.ranges[part]
            warnings.append(f"Voice part {part} leaves its range {bound.lowest}-{bound.highest}.")
    return NotationDiagnostics(fatal=errors, warnings=warnings)


def normalize_notation(payload: Mapping[str, list[str]]) -> dict[str, list[str]]:
    return {part: [normalize_syllable(token) for token in payload[part]] for part in VOICE_PARTS if part in payload}
