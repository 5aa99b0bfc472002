from __future__ import annotations

import logging
import time

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from choir_solfa.config import load_settings
from choir_solfa.logging_utils import (
    clear_request_context,
    configure_logging,
    current_request_id,
    log_event,
    new_request_id,
    request_elapsed_ms,
    set_request_context,
)
from choir_solfa.models import (
    NotationValidationRequest,
    NoteConversionRequest,
    NoteConversionResponse,
    SolfaGenerationRequest,
    SolfaGenerationResponse,
    VoicePartInfo,
)
from choir_solfa.services.completion_client import create_completion_client
from choir_solfa.services.notation_generator import InvalidArgumentError, NotationGenerator
from choir_solfa.services.notation_validation import validate_request_notations
from choir_solfa.services.solfa_theory import VOICE_PARTS, convert_to_solfa, tokenize_lyrics

configure_logging()
logger = logging.getLogger(__name__)

settings = load_settings()
generator = NotationGenerator(
    create_completion_client(settings),
    timeout_seconds=settings.llm_timeout_seconds,
)

NOTATION_SOURCE_HEADER = "X-Notation-Source"

app = FastAPI(title="Choir Solfa")


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or new_request_id()
    request.state.request_id = request_id
    set_request_context(request_id=request_id, route=request.url.path)
    started = time.perf_counter()
    status_code = 500
    notation_source = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        notation_source = response.headers.get(NOTATION_SOURCE_HEADER)
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        log_event(
            logger,
            "request_completed",
            method=request.method,
            status_code=status_code,
            notation_source=notation_source,
            duration_ms=request_elapsed_ms(started),
        )
        clear_request_context()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    # The middleware has already cleared the context by the time this runs.
    request_id = getattr(request.state, "request_id", current_request_id())
    logger.exception(
        "unhandled_exception",
        extra={"event": "unhandled_exception", "request_id": request_id, "exception_type": type(exc).__name__},
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Something went wrong while generating notation. Please try again.",
            "request_id": request_id,
        },
        headers={"X-Request-ID": request_id},
    )


def _handle_user_error(action: str, exc: ValueError) -> HTTPException:
    log_event(logger, "request_failed", level=logging.WARNING, action=action, reason=str(exc))
    return HTTPException(
        status_code=422,
        detail={
            "message": f"{action} failed. Please adjust inputs and try again.",
            "reason": str(exc),
            "request_id": current_request_id(),
        },
    )


@app.post("/api/generate-solfa", response_model=SolfaGenerationResponse)
async def generate_solfa_endpoint(payload: SolfaGenerationRequest, response: Response):
    try:
        report = await generator.generate_with_report(payload.lyrics, payload.voice_parts, payload.options)
    except InvalidArgumentError as exc:
        raise _handle_user_error("Solfa generation", exc) from exc
    response.headers[NOTATION_SOURCE_HEADER] = report.source
    return SolfaGenerationResponse(
        notations=report.notations,
        source=report.source,
        word_count=report.word_count,
        warnings=report.warnings,
    )


@app.post("/api/validate-notation")
def validate_notation_endpoint(payload: NotationValidationRequest):
    word_count = len(tokenize_lyrics(payload.lyrics)) if payload.lyrics is not None else None
    report = validate_request_notations(payload.notations, word_count, generator.tables)
    if report.fatal:
        log_event(logger, "validation_failed", level=logging.WARNING, action="Notation validation", diagnostics=report.fatal)
        return {
            "valid": False,
            "message": "The notation failed validation. Please adjust it and try again.",
            "request_id": current_request_id(),
            "errors": report.fatal,
            "warnings": report.warnings,
        }
    log_event(logger, "validation_passed", action="Notation validation", warning_count=len(report.warnings))
    return {"valid": True, "errors": [], "warnings": report.warnings}


@app.post("/api/convert-notes", response_model=NoteConversionResponse)
def convert_notes_endpoint(payload: NoteConversionRequest):
    return NoteConversionResponse(solfa=convert_to_solfa(payload.notes))


@app.get("/api/voice-parts", response_model=list[VoicePartInfo])
def voice_parts_endpoint():
    tables = generator.tables
    return [
        VoicePartInfo(
            name=part,
            color=tables.colors[part],
            lowest=tables.ranges[part].lowest,
            highest=tables.ranges[part].highest,
            phase_offset=tables.phase_offsets[part],
        )
        for part in VOICE_PARTS
    ]
