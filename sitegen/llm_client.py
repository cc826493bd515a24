from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from sitegen import config
from sitegen.errors import ProviderError
from sitegen.llm_parsing import is_incomplete
from sitegen.llm_prompts import build_completion_prompt
from sitegen.models import ProviderProfile, RawOutput
from sitegen.providers import ProviderClient, create_client

log = logging.getLogger(__name__)


class ProviderFacade:
    """Single generation entry point over whichever provider client is active.

    The client is chosen at construction. `set_provider` swaps it under a lock
    for callers that change AI settings at runtime; in-flight calls keep the
    client they started with.
    """

    def __init__(self, client: Optional[ProviderClient] = None):
        self._client = client or create_client()
        self._lock = threading.Lock()

    @property
    def client(self) -> ProviderClient:
        with self._lock:
            return self._client

    def set_provider(self, name: str, **kwargs: Any) -> ProviderClient:
        client = create_client(name, **kwargs)
        with self._lock:
            self._client = client
        log.info("AI provider set to %s (model=%s)", client.name, client.model)
        return client

    def set_model(self, model: str) -> None:
        self.client.set_model(model)

    def available_models(self) -> List[str]:
        try:
            return self.client.list_models()
        except Exception:
            log.exception("listing models failed")
            return []

    def profile(self) -> ProviderProfile:
        return self.client.profile()

    def status(self) -> Dict[str, Any]:
        prof = self.profile()
        return {
            "provider": prof.provider,
            "model": prof.model,
            "quota_exceeded": prof.quota_exceeded,
            "remaining": prof.remaining,
            "reset_at": prof.reset_at,
        }

    def probe(self) -> Dict[str, Any]:
        client = self.client
        return {"ok": client.check_reachable(), "using": client.name, "model": client.model}

    def generate(
        self,
        prompt: str,
        content_type: str = "json",
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> RawOutput:
        """Generate once, then run at most one completion pass if the text looks truncated.

        Provider errors from the first call propagate. A failing completion call
        leaves the first fragment marked incomplete.
        """
        client = self.client
        merged = config.params_for(content_type, params)
        if timeout:
            merged["timeout"] = timeout
        first = client.generate(prompt, merged)
        if not is_incomplete(first.text):
            return first

        log.info("%s output looks truncated (%d chars); running completion pass", client.name, first.length)
        follow_params = dict(merged)
        follow_params.pop("format", None)
        follow_params["max_tokens"] = max(
            config.COMPLETION_MIN_TOKENS,
            int(int(merged.get("max_tokens") or 0) * config.COMPLETION_TOKEN_RATIO),
        )
        try:
            rest = client.generate(build_completion_prompt(prompt, first.text), follow_params)
        except ProviderError as exc:
            if not exc.retryable:
                raise
            log.warning("completion pass failed: %s", exc)
            return first.model_copy(update={"incomplete": True})

        text = first.text + rest.text
        combined = RawOutput(
            text=text,
            elapsed=first.elapsed + rest.elapsed,
            model=first.model,
            incomplete=is_incomplete(text),
        )
        if combined.incomplete:
            log.warning("%s output still truncated after completion pass (%d chars)", client.name, combined.length)
        return combined
