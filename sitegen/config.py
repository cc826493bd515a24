from __future__ import annotations

import os
from typing import Any, Dict, Optional

from sitegen.models import RetryPolicy


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)) or default)
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except Exception:
        return default


AI_PROVIDER = os.getenv("AI_PROVIDER", "ollama").strip().lower()

# Local model server
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434").strip().rstrip("/")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama2").strip()

# Hosted API (OpenAI-compatible chat completions)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "").strip()
OPENROUTER_URL = os.getenv("OPENROUTER_URL", "https://openrouter.ai/api/v1").strip().rstrip("/")
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "gpt-3.5-turbo").strip()
SITE_NAME = os.getenv("SITE_NAME", "AI Website Builder").strip()
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").strip()
# Used when a 429 carries no reset hint
QUOTA_RESET_FALLBACK_SECS = _env_float("QUOTA_RESET_FALLBACK_SECS", 3600.0)

PROBE_TIMEOUT_SECS = _env_float("PROBE_TIMEOUT_SECS", 10.0)

DEFAULT_PARAMS: Dict[str, Any] = {
    "temperature": _env_float("LLM_TEMPERATURE", 0.7),
    "top_p": _env_float("LLM_TOP_P", 0.9),
    "max_tokens": _env_int("LLM_MAX_TOKENS", 4096),
    "stop": [],
}

# Structured output wants a cooler, longer generation
JSON_PARAMS: Dict[str, Any] = {
    "temperature": _env_float("LLM_JSON_TEMPERATURE", 0.2),
    "top_p": _env_float("LLM_JSON_TOP_P", 0.8),
    "max_tokens": _env_int("LLM_JSON_MAX_TOKENS", 8192),
    "format": "json",
}

TIMEOUTS: Dict[str, float] = {
    "default": _env_float("LLM_TIMEOUT_DEFAULT", 60.0),
    "header": _env_float("LLM_TIMEOUT_HEADER", 60.0),
    "footer": _env_float("LLM_TIMEOUT_HEADER", 60.0),
    "page": _env_float("LLM_TIMEOUT_PAGE", 120.0),
    "section": _env_float("LLM_TIMEOUT_DEFAULT", 60.0),
    "complex": _env_float("LLM_TIMEOUT_COMPLEX", 180.0),
}

RETRY_ATTEMPTS = _env_int("RETRY_ATTEMPTS", 3)
RETRY_INITIAL_DELAY = _env_float("RETRY_INITIAL_DELAY", 1.0)
RETRY_MAX_DELAY = _env_float("RETRY_MAX_DELAY", 10.0)
RETRY_MULTIPLIER = _env_float("RETRY_MULTIPLIER", 2.0)

# Completion pass budget relative to the original max_tokens
COMPLETION_TOKEN_RATIO = 0.3
COMPLETION_MIN_TOKENS = 256

GENERATION_WORKERS = max(1, _env_int("GENERATION_WORKERS", 4))
OUTPUT_DIR = os.getenv("SITEGEN_OUTPUT_DIR", "generated").strip()

REDIS_URL = os.getenv("REDIS_URL", "").strip()
PROGRESS_TTL_SECS = _env_int("PROGRESS_TTL_SECS", 3600)


def params_for(content_type: str, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Default params merged with the content-type params, then any explicit overrides."""
    params: Dict[str, Any] = dict(DEFAULT_PARAMS)
    params["stop"] = list(DEFAULT_PARAMS.get("stop") or [])
    if (content_type or "").lower() == "json":
        params.update(JSON_PARAMS)
    if overrides:
        params.update({k: v for k, v in overrides.items() if v is not None})
    return params


def timeout_for(stage: str) -> float:
    return TIMEOUTS.get((stage or "").lower(), TIMEOUTS["default"])


def retry_policy() -> RetryPolicy:
    return RetryPolicy(
        attempts=max(1, RETRY_ATTEMPTS),
        initial_delay=max(0.0, RETRY_INITIAL_DELAY),
        max_delay=max(0.0, RETRY_MAX_DELAY),
        multiplier=max(1.0, RETRY_MULTIPLIER),
    )
