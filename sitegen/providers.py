from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from sitegen import config
from sitegen.errors import (
    ProviderTimeout,
    ProviderUnreachable,
    QuotaExceeded,
    UnexpectedResponse,
)
from sitegen.models import ProviderProfile, RawOutput

log = logging.getLogger(__name__)

JSON_OUTPUT_INSTRUCTION = (
    "\n\nIMPORTANT: Respond with a single valid JSON object only. "
    "Do not wrap it in markdown fences and do not add any text before or after it."
)

HOSTED_SYSTEM_PROMPT = (
    "You are an expert web developer assistant specialised in website creation. "
    "You write clean, responsive HTML5 with Bootstrap 5 classes and scoped CSS, "
    "and you follow the requested output format exactly."
)


class ProviderClient(ABC):
    """One text-generation backend behind a uniform contract."""

    name = "provider"

    def __init__(self, model: str, timeout: Optional[float] = None):
        self.model = model
        self.timeout = timeout or config.timeout_for("default")
        self._lock = threading.Lock()

    @abstractmethod
    def check_reachable(self) -> bool:
        ...

    @abstractmethod
    def list_models(self) -> List[str]:
        ...

    @abstractmethod
    def generate(self, prompt: str, params: Optional[Dict[str, Any]] = None) -> RawOutput:
        ...

    def set_model(self, model: str) -> None:
        model = (model or "").strip()
        if not model:
            raise ValueError("model name must not be empty")
        with self._lock:
            self.model = model
        log.info("%s model set to %s", self.name, model)

    def profile(self) -> ProviderProfile:
        return ProviderProfile(provider=self.name, model=self.model, params=config.params_for("default"))

    def _timeout(self, params: Dict[str, Any]) -> float:
        try:
            return float(params.get("timeout") or self.timeout)
        except (TypeError, ValueError):
            return self.timeout


class LocalModelClient(ProviderClient):
    """Ollama-style local model server."""

    name = "ollama"

    def __init__(self, server_url: str = "", model: str = "", timeout: Optional[float] = None):
        super().__init__(model or config.OLLAMA_MODEL, timeout)
        self.server_url = (server_url or config.OLLAMA_URL).rstrip("/")

    def check_reachable(self) -> bool:
        try:
            resp = requests.get(f"{self.server_url}/api/tags", timeout=config.PROBE_TIMEOUT_SECS)
        except requests.RequestException as exc:
            log.warning("Ollama server not reachable at %s: %r", self.server_url, exc)
            return False
        return resp.status_code == 200

    def list_models(self) -> List[str]:
        try:
            resp = requests.get(f"{self.server_url}/api/tags", timeout=config.PROBE_TIMEOUT_SECS)
            if resp.status_code != 200:
                log.warning("Ollama model listing HTTP %s", resp.status_code)
                return []
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            log.warning("Ollama model listing failed: %r", exc)
            return []
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        return [m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)]

    def generate(self, prompt: str, params: Optional[Dict[str, Any]] = None) -> RawOutput:
        params = dict(params or {})
        wants_json = params.get("format") == "json"
        if wants_json:
            prompt = prompt + JSON_OUTPUT_INSTRUCTION
            params["temperature"] = min(float(params.get("temperature", 0.2)), 0.2)
            params["top_p"] = min(float(params.get("top_p", 0.8)), 0.8)
            params["max_tokens"] = max(int(params.get("max_tokens") or 0), 8192)

        options: Dict[str, Any] = {
            "temperature": params.get("temperature"),
            "top_p": params.get("top_p"),
            "num_predict": params.get("max_tokens"),
        }
        if params.get("stop"):
            options["stop"] = list(params["stop"])
        body: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {k: v for k, v in options.items() if v is not None},
        }
        if wants_json:
            body["format"] = "json"

        timeout = self._timeout(params)
        started = time.time()
        try:
            resp = requests.post(f"{self.server_url}/api/generate", json=body, timeout=timeout)
        except requests.Timeout as exc:
            raise ProviderTimeout(f"no response within {timeout:.0f}s", provider=self.name) from exc
        except requests.RequestException as exc:
            raise ProviderUnreachable(f"request failed: {exc!r}", provider=self.name) from exc

        if resp.status_code != 200:
            raise UnexpectedResponse(
                f"HTTP {resp.status_code}: {(resp.text or '')[:300]}",
                provider=self.name,
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise UnexpectedResponse("non-JSON response body", provider=self.name) from exc
        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise UnexpectedResponse("response field missing", provider=self.name)
        elapsed = time.time() - started
        log.debug("ollama generate model=%s chars=%d elapsed=%.2fs", self.model, len(text), elapsed)
        return RawOutput(text=text, elapsed=elapsed, model=self.model)


class HostedApiClient(ProviderClient):
    """OpenRouter-style hosted chat-completions API with quota tracking."""

    name = "openrouter"

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "",
        model: str = "",
        timeout: Optional[float] = None,
        site_name: str = "",
        site_url: str = "",
    ):
        super().__init__(model or config.OPENROUTER_MODEL, timeout)
        self.api_key = api_key if api_key else config.OPENROUTER_API_KEY
        self.base_url = (base_url or config.OPENROUTER_URL).rstrip("/")
        self.site_name = site_name or config.SITE_NAME
        self.site_url = site_url or config.SITE_URL
        self._remaining: Optional[int] = None
        self._reset_at: Optional[float] = None
        self._quota_exceeded = False

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.site_url,
            "X-Title": self.site_name,
        }

    def check_reachable(self) -> bool:
        if not self.api_key:
            return False
        try:
            resp = requests.get(f"{self.base_url}/models", headers=self._headers(), timeout=config.PROBE_TIMEOUT_SECS)
        except requests.RequestException as exc:
            log.warning("OpenRouter not reachable: %r", exc)
            return False
        return resp.status_code == 200

    def list_models(self) -> List[str]:
        if not self.api_key:
            return []
        try:
            resp = requests.get(f"{self.base_url}/models", headers=self._headers(), timeout=config.PROBE_TIMEOUT_SECS)
            if resp.status_code != 200:
                log.warning("OpenRouter model listing HTTP %s", resp.status_code)
                return []
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            log.warning("OpenRouter model listing failed: %r", exc)
            return []
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        return [m["id"] for m in items if isinstance(m, dict) and isinstance(m.get("id"), str)]

    # Quota bookkeeping

    def _check_quota(self) -> None:
        with self._lock:
            if not self._quota_exceeded:
                return
            if self._reset_at is not None and time.time() >= self._reset_at:
                self._quota_exceeded = False
                self._remaining = None
                log.info("OpenRouter quota window reset")
                return
            reset_at = self._reset_at
        raise QuotaExceeded("quota exceeded; waiting for reset", provider=self.name, reset_at=reset_at)

    @staticmethod
    def _parse_reset(value: Optional[str]) -> Optional[float]:
        if not value:
            return None
        try:
            ts = float(value)
        except (TypeError, ValueError):
            return None
        # Some gateways report milliseconds
        if ts > 1e12:
            ts = ts / 1000.0
        return ts

    def _track_usage(self, headers: Any) -> None:
        remaining = headers.get("x-ratelimit-remaining") if headers is not None else None
        reset_at = self._parse_reset(headers.get("x-ratelimit-reset") if headers is not None else None)
        with self._lock:
            if remaining is not None:
                try:
                    self._remaining = int(float(remaining))
                except (TypeError, ValueError):
                    pass
            if reset_at is not None:
                self._reset_at = reset_at

    def _register_quota_exceeded(self, headers: Any) -> float:
        reset_at = self._parse_reset(headers.get("x-ratelimit-reset") if headers is not None else None)
        if reset_at is None:
            retry_after = headers.get("Retry-After") if headers is not None else None
            try:
                reset_at = time.time() + float(retry_after) if retry_after else None
            except (TypeError, ValueError):
                reset_at = None
        if reset_at is None:
            reset_at = time.time() + config.QUOTA_RESET_FALLBACK_SECS
        with self._lock:
            self._quota_exceeded = True
            self._remaining = 0
            self._reset_at = reset_at
        log.warning("OpenRouter quota exceeded; short-circuiting until %.0f", reset_at)
        return reset_at

    def profile(self) -> ProviderProfile:
        with self._lock:
            return ProviderProfile(
                provider=self.name,
                model=self.model,
                params=config.params_for("default"),
                remaining=self._remaining,
                reset_at=self._reset_at,
                quota_exceeded=self._quota_exceeded,
            )

    def generate(self, prompt: str, params: Optional[Dict[str, Any]] = None) -> RawOutput:
        if not self.api_key:
            raise ProviderUnreachable("OPENROUTER_API_KEY is not configured", provider=self.name)
        self._check_quota()

        params = dict(params or {})
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": HOSTED_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": params.get("temperature"),
            "max_tokens": params.get("max_tokens"),
            "top_p": params.get("top_p"),
        }
        if params.get("stop"):
            body["stop"] = list(params["stop"])
        body = {k: v for k, v in body.items() if v is not None}
        wants_json = params.get("format") == "json"
        if wants_json:
            body["response_format"] = {"type": "json_object"}

        timeout = self._timeout(params)
        started = time.time()
        resp = self._send(body, timeout)
        if resp.status_code == 400 and wants_json:
            # Not every routed model accepts JSON mode
            log.info("OpenRouter rejected response_format; retrying without it")
            body.pop("response_format", None)
            resp = self._send(body, timeout)

        if resp.status_code == 429:
            reset_at = self._register_quota_exceeded(resp.headers)
            raise QuotaExceeded("HTTP 429 from provider", provider=self.name, reset_at=reset_at)
        if resp.status_code != 200:
            raise UnexpectedResponse(
                f"HTTP {resp.status_code}: {(resp.text or '')[:300]}",
                provider=self.name,
                status_code=resp.status_code,
            )
        self._track_usage(resp.headers)

        try:
            data = resp.json()
        except ValueError as exc:
            raise UnexpectedResponse("non-JSON response body", provider=self.name) from exc
        text = None
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not isinstance(text, str) or not text.strip():
            raise UnexpectedResponse("empty completion", provider=self.name)
        elapsed = time.time() - started
        log.debug("openrouter generate model=%s chars=%d elapsed=%.2fs", self.model, len(text), elapsed)
        return RawOutput(text=text, elapsed=elapsed, model=str(data.get("model") or self.model))

    def _send(self, body: Dict[str, Any], timeout: float):
        try:
            return requests.post(
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json=body,
                timeout=timeout,
            )
        except requests.Timeout as exc:
            raise ProviderTimeout(f"no response within {timeout:.0f}s", provider=self.name) from exc
        except requests.RequestException as exc:
            raise ProviderUnreachable(f"request failed: {exc!r}", provider=self.name) from exc


PROVIDER_ALIASES = {
    "ollama": "ollama",
    "local": "ollama",
    "openrouter": "openrouter",
    "hosted": "openrouter",
}


def create_client(name: Optional[str] = None, **kwargs: Any) -> ProviderClient:
    """Build the provider client registered under `name` (defaults to AI_PROVIDER)."""
    key = PROVIDER_ALIASES.get((name or config.AI_PROVIDER or "").strip().lower())
    if key == "ollama":
        return LocalModelClient(**kwargs)
    if key == "openrouter":
        return HostedApiClient(**kwargs)
    raise ValueError(f"Unknown AI provider: {name!r}. Use 'ollama' or 'openrouter'.")
