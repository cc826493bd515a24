from __future__ import annotations

from typing import Optional


class ProviderError(Exception):
    """Failure talking to a text-generation backend."""

    kind = "unexpected"
    retryable = True

    def __init__(self, message: str, *, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.provider:
            return f"[{self.provider}] {base}"
        return base


class ProviderUnreachable(ProviderError):
    kind = "network"


class ProviderTimeout(ProviderError):
    kind = "timeout"


class QuotaExceeded(ProviderError):
    kind = "quota_exceeded"
    # A doomed request; waiting out a backoff will not help
    retryable = False

    def __init__(self, message: str, *, provider: str = "", reset_at: Optional[float] = None):
        super().__init__(message, provider=provider, status_code=429)
        self.reset_at = reset_at


class UnexpectedResponse(ProviderError):
    kind = "unexpected"


class MalformedOutput(Exception):
    """Provider text could not be turned into a usable payload."""


class IncompleteOutput(MalformedOutput):
    """Provider text was still truncated after the completion pass."""


class PersistenceFailure(Exception):
    """The storage collaborator could not save an artifact."""
