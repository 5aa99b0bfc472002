from __future__ import annotations

from choir_solfa.models import GenerationOptions
from choir_solfa.services.solfa_theory import DEFAULT_TABLES, VOICE_PARTS, NotationTables


def build_system_prompt(tables: NotationTables = DEFAULT_TABLES) -> str:
    range_lines = "\n".join(
        f"   - {part.capitalize()}: {tables.ranges[part].lowest} to {tables.ranges[part].highest}"
        for part in VOICE_PARTS
    )
    return f"""You are a music theory expert specializing in solfa notation for choirs.
Follow these rules:
1. Use only the syllables {", ".join(tables.syllables)}.
2. Keep every voice part inside its range:
{range_lines}
3. Create harmonically plausible progressions between the four parts.
4. Follow traditional voice-leading rules: prefer stepwise motion, avoid voice crossing.
5. Assign exactly one syllable per lyric word, in order.
6. Respond with a single JSON object with the arrays "soprano", "alto", "tenor" and "bass",
   plus the "key", "tempo" and "style" you used."""


SYSTEM_PROMPT = build_system_prompt()


def build_user_prompt(lyrics: str, options: GenerationOptions, word_count: int) -> str:
    return (
        "Generate solfa notation for the following lyrics:\n"
        f'Lyrics: "{lyrics}"\n'
        f"Key: {options.key}\n"
        f"Tempo: {options.tempo:g} BPM\n"
        f"Style: {options.style}\n"
        f"Difficulty: {options.difficulty}\n\n"
        f"The lyrics contain {word_count} words, so each voice part needs exactly {word_count} syllables. "
        "Provide the notation for all four voice parts (soprano, alto, tenor, bass) following proper music theory rules."
    )
