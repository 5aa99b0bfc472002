from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from choir_solfa.logging_utils import generation_context, log_event, update_generation_context
from choir_solfa.models import GenerationOptions, NotationSource, VoiceName
from choir_solfa.services.completion_client import CompletionClient, CompletionServiceError
from choir_solfa.services.notation_validation import (
    InvalidArgumentError,
    normalize_notation,
    validate_notation_diagnostics,
)
from choir_solfa.services.prompts import build_system_prompt, build_user_prompt
from choir_solfa.services.solfa_theory import (
    DEFAULT_TABLES,
    VOICE_PARTS,
    NotationTables,
    is_voice_part,
    ordered_parts,
    tokenize_lyrics,
)

DEFAULT_TIMEOUT_SECONDS = 20.0

logger = logging.getLogger(__name__)

NotationResult = dict[VoiceName, list[str]]


@dataclass
class GenerationReport:
    notations: NotationResult
    source: NotationSource
    word_count: int
    diagnostics: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _check_arguments(lyrics: Any, requested_parts: Any) -> list[VoiceName]:
    if not isinstance(lyrics, str):
        raise InvalidArgumentError(f"Lyrics must be a string, got {type(lyrics).__name__}.")
    if isinstance(requested_parts, str) or not isinstance(requested_parts, Iterable):
        raise InvalidArgumentError("Requested voice parts must be a collection of voice-part names.")
    parts = list(requested_parts)
    unknown = [part for part in parts if not is_voice_part(part)]
    if unknown:
        raise InvalidArgumentError(f"Unknown voice parts requested: {unknown}. Use soprano, alto, tenor or bass.")
    return ordered_parts(parts)


def _coerce_options(options: GenerationOptions | Mapping[str, Any] | None) -> GenerationOptions:
    if options is None:
        return GenerationOptions()
    if isinstance(options, GenerationOptions):
        return options
    if isinstance(options, Mapping):
        try:
            return GenerationOptions(**options)
        except ValidationError as exc:
            raise InvalidArgumentError(f"Invalid generation options: {exc.error_count()} problem(s).") from exc
    raise InvalidArgumentError(f"Generation options must be a mapping, got {type(options).__name__}.")


def _project(notations: Mapping[str, list[str]], parts: list[VoiceName]) -> NotationResult:
    return {part: list(notations[part]) for part in parts}


def _fallback_all_parts(words: list[str], tables: NotationTables) -> NotationResult:
    return {part: [tables.syllable_for(idx, part) for idx in range(len(words))] for part in VOICE_PARTS}


def generate_fallback_notation(
    lyrics: str,
    requested_parts: Iterable[str],
    tables: NotationTables = DEFAULT_TABLES,
) -> NotationResult:
    """Deterministic offline notation: each part walks the syllable cycle from its own phase offset."""
    parts = _check_arguments(lyrics, requested_parts)
    return _project(_fallback_all_parts(tokenize_lyrics(lyrics), tables), parts)


class NotationGenerator:
    """Produce per-part solfa for lyrics, preferring the completion service and
    falling back to the deterministic cycle for every part on any failure.

    ``asyncio.CancelledError`` raised while the service call is in flight is
    not absorbed; cancellation reaches the caller unchanged.
    """

    def __init__(
        self,
        client: CompletionClient | None = None,
        *,
        tables: NotationTables = DEFAULT_TABLES,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._tables = tables
        self._timeout_seconds = timeout_seconds
        self._system_prompt = build_system_prompt(tables)

    @property
    def tables(self) -> NotationTables:
        return self._tables

    async def generate(
        self,
        lyrics: str,
        requested_parts: Iterable[str],
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> NotationResult:
        report = await self.generate_with_report(lyrics, requested_parts, options)
        return report.notations

    async def generate_with_report(
        self,
        lyrics: str,
        requested_parts: Iterable[str],
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> GenerationReport:
        parts = _check_arguments(lyrics, requested_parts)
        opts = _coerce_options(options)
        words = tokenize_lyrics(lyrics)
        with generation_context(word_count=len(words), voice_parts=parts):
            log_event(
                logger,
                "solfa_generation_started",
                key=opts.key,
                tempo=opts.tempo,
                style=opts.style,
                difficulty=opts.difficulty,
                lyrics=lyrics,
            )

            diagnostics: list[str] = []
            warnings: list[str] = []
            external: NotationResult | None = None
            if self._client is None:
                log_event(logger, "external_generation_skipped", reason="no_client")
            elif not words or not parts:
                log_event(logger, "external_generation_skipped", reason="nothing_to_generate")
            else:
                external, diagnostics, warnings = await self._generate_external(lyrics, words, opts)

            if external is not None:
                report = GenerationReport(
                    notations=_project(external, parts),
                    source="external",
                    word_count=len(words),
                    warnings=warnings,
                )
            else:
                report = GenerationReport(
                    notations=_project(_fallback_all_parts(words, self._tables), parts),
                    source="fallback",
                    word_count=len(words),
                    diagnostics=diagnostics,
                )
            update_generation_context(source=report.source)
            log_event(logger, "solfa_generation_completed", source=report.source)
        return report

    async def _generate_external(
        self,
        lyrics: str,
        words: list[str],
        options: GenerationOptions,
    ) -> tuple[NotationResult | None, list[str], list[str]]:
        user_prompt = build_user_prompt(lyrics, options, len(words))
        try:
            payload = await asyncio.wait_for(
                self._client.complete(self._system_prompt, user_prompt, options),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            reason = f"Completion service did not answer within {self._timeout_seconds:g}s."
            log_event(logger, "external_generation_failed", level=logging.WARNING, reason=reason, exception_type="TimeoutError")
            return None, [reason], []
        except CompletionServiceError as exc:
            log_event(logger, "external_generation_failed", level=logging.WARNING, reason=str(exc), exception_type=type(exc).__name__)
            return None, [str(exc)], []
        except Exception as exc:
            log_event(
                logger,
                "external_generation_failed",
                level=logging.WARNING,
                reason=str(exc),
                exception_type=type(exc).__name__,
            )
            return None, [f"{type(exc).__name__}: {exc}"], []

        report = validate_notation_diagnostics(payload, len(words), self._tables, expected_key=options.key)
        if report.fatal:
            log_event(logger, "notation_validation_failed", level=logging.WARNING, diagnostics=report.fatal)
            return None, report.fatal, report.warnings
        if report.warnings:
            log_event(logger, "notation_validation_warnings", diagnostics=report.warnings)
        return normalize_notation(payload), [], report.warnings
