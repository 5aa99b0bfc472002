from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")
route_var: contextvars.ContextVar[str] = contextvars.ContextVar("route", default="-")
generation_var: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("generation", default={})

PREVIEW_CHARS = 80

# Free text that may carry a whole hymn or prompt; only a preview is ever written.
TEXT_PREVIEW_FIELDS = frozenset({"lyrics", "user_prompt", "system_prompt", "content"})
GENERATION_FIELDS = ("word_count", "voice_parts", "source")
CORE_FIELDS = ("timestamp", "level", "event", "request_id", "route", *GENERATION_FIELDS)

_LOG_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


class GenerationContextFilter(logging.Filter):
    """Stamp records with the request id, route and current generation fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        if not hasattr(record, "route"):
            record.route = route_var.get()
        if not hasattr(record, "event"):
            record.event = record.msg if isinstance(record.msg, str) else "log"
        for key, value in generation_var.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class StructuredFormatter(logging.Formatter):
    def __init__(self, json_output: bool) -> None:
        super().__init__()
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "event": getattr(record, "event", "log"),
            "request_id": getattr(record, "request_id", "-"),
            "route": getattr(record, "route", "-"),
        }
        for key in GENERATION_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        message = record.getMessage()
        if message and message != payload["event"]:
            payload["message"] = message

        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _LOG_RECORD_ATTRS or key in payload:
                continue
            if key in TEXT_PREVIEW_FIELDS and isinstance(value, str):
                value = summarize_text(value)
            payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        if self.json_output:
            return json.dumps(payload, default=str)
        core = [f"{key}={payload.pop(key)}" for key in CORE_FIELDS if key in payload]
        return " ".join([*core, *(f"{k}={v}" for k, v in payload.items())])


def configure_logging() -> None:
    root = logging.getLogger()
    if getattr(root, "_solfa_logging_configured", False):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(json_output=os.getenv("LOG_FORMAT", "text").lower() == "json"))
    handler.addFilter(GenerationContextFilter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    root._solfa_logging_configured = True  # type: ignore[attr-defined]


def set_request_context(*, request_id: str, route: str) -> None:
    request_id_var.set(request_id)
    route_var.set(route)


def clear_request_context() -> None:
    request_id_var.set("-")
    route_var.set("-")
    generation_var.set({})


def current_request_id() -> str:
    return request_id_var.get()


def new_request_id() -> str:
    return str(uuid.uuid4())


@contextmanager
def generation_context(**fields: Any) -> Iterator[None]:
    """Attach generation fields (word count, parts, source) to every record logged inside the block."""
    token = generation_var.set({**generation_var.get(), **fields})
    try:
        yield
    finally:
        generation_var.reset(token)


def update_generation_context(**fields: Any) -> None:
    generation_var.set({**generation_var.get(), **fields})


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    logger.log(level, event, extra={"event": event, **fields})


def summarize_text(text: str, limit: int = PREVIEW_CHARS) -> str:
    collapsed = " ".join(text.split())
    if len(collapsed) <= limit:
        return collapsed
    return f"{collapsed[:limit]}...(+{len(collapsed) - limit} chars)"


def request_elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)
