"""Service settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4"


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    """Read a float env var with a default."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


@dataclass(frozen=True)
class Settings:
    """Completion-service configuration."""
    llm_provider: str
    llm_api_key: str
    llm_base_url: str
    llm_model: str
    llm_timeout_seconds: float
    llm_temperature: float
    static_response: str


def load_settings() -> Settings:
    return Settings(
        llm_provider=_env_str("SOLFA_LLM_PROVIDER", "none").lower(),
        llm_api_key=_env_str("SOLFA_LLM_API_KEY", "") or _env_str("OPENAI_API_KEY", ""),
        llm_base_url=_env_str("SOLFA_LLM_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        llm_model=_env_str("SOLFA_LLM_MODEL", DEFAULT_MODEL),
        llm_timeout_seconds=_env_float("SOLFA_LLM_TIMEOUT_SECONDS", 20.0),
        llm_temperature=_env_float("SOLFA_LLM_TEMPERATURE", 0.7),
        static_response=os.getenv("SOLFA_STATIC_RESPONSE", ""),
    )
