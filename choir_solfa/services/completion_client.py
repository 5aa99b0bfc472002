"""Completion-service capability used by the notation generator, plus its implementations."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from choir_solfa.config import Settings
from choir_solfa.logging_utils import log_event, summarize_text
from choir_solfa.models import GenerationOptions

logger = logging.getLogger(__name__)


class CompletionServiceError(RuntimeError):
    pass


class CompletionClient(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> dict[str, Any]:
        """Return the structured object produced for the prompts, or raise CompletionServiceError."""
        ...


@dataclass
class StaticCompletionClient:
    """Fixed-response client for tests and offline runs."""
    payload: Any = None
    error: Exception | None = None
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def complete(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> dict[str, Any]:
        self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt, "options": options})
        if self.error is not None:
            raise self.error
        if not isinstance(self.payload, dict):
            raise CompletionServiceError("Static completion payload is not an object.")
        return self.payload


class OpenAICompatibleClient:
    """Chat-completions client for OpenAI-compatible endpoints."""
    def __init__(self, settings: Settings, *, api_key: str | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._api_key = api_key or settings.llm_api_key
        self._base_url = settings.llm_base_url
        self._model = settings.llm_model
        self._timeout = settings.llm_timeout_seconds
        self._temperature = settings.llm_temperature
        self._transport = transport

    async def complete(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> dict[str, Any]:
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self._temperature,
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport) as client:
                response = await client.post("/chat/completions", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise CompletionServiceError("Completion request timed out.") from exc
        except httpx.HTTPError as exc:
            raise CompletionServiceError(f"Completion connection error: {exc}") from exc

        if response.status_code >= 300:
            raise CompletionServiceError(f"Completion HTTP error {response.status_code}: {summarize_text(response.text)}")

        try:
            body = response.json()
        except ValueError as exc:
            raise CompletionServiceError("Completion response body is not JSON.") from exc

        choices = body.get("choices") if isinstance(body, dict) else None
        if not choices:
            raise CompletionServiceError("Completion returned no choices.")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise CompletionServiceError("Completion returned empty content.")

        try:
            parsed = json.loads(_strip_code_fence(content))
        except json.JSONDecodeError as exc:
            raise CompletionServiceError(f"Completion content is not valid JSON: {summarize_text(content)}") from exc
        if not isinstance(parsed, dict):
            raise CompletionServiceError("Completion content is not a JSON object.")

        log_event(logger, "completion_received", model=self._model, key=options.key, fields=sorted(parsed))
        return parsed


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def create_completion_client(settings: Settings) -> CompletionClient | None:
    """Build the configured completion client, or None when the external path is disabled."""
    provider = settings.llm_provider
    if provider in {"", "none", "disabled"}:
        return None
    if provider == "static":
        payload: Any = None
        if settings.static_response:
            try:
                payload = json.loads(settings.static_response)
            except json.JSONDecodeError:
                log_event(logger, "static_response_invalid", level=logging.WARNING, preview=summarize_text(settings.static_response))
        return StaticCompletionClient(payload=payload)
    if provider == "openai":
        if not settings.llm_api_key:
            log_event(logger, "completion_client_disabled", level=logging.WARNING, reason="missing_api_key")
            return None
        return OpenAICompatibleClient(settings)
    raise ValueError(f"Unsupported completion provider: {provider}")
