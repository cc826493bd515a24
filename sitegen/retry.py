from __future__ import annotations

import logging
import time
from typing import Any, Callable, NamedTuple, Optional, TypeVar, Union

from sitegen.errors import MalformedOutput, PersistenceFailure, ProviderError
from sitegen.models import RetryPolicy

log = logging.getLogger(__name__)

T = TypeVar("T")


class RetryOutcome(NamedTuple):
    value: Any
    attempts: int
    used_fallback: bool
    last_error: Optional[BaseException]


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Delay after failed attempt `attempt` (1-based)."""
    return min(policy.initial_delay * policy.multiplier ** (attempt - 1), policy.max_delay)


def _resolve(fallback: Union[T, Callable[[], T]]) -> T:
    return fallback() if callable(fallback) else fallback


def run_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    fallback: Union[T, Callable[[], T]],
    sleep: Callable[[float], None] = time.sleep,
    label: str = "",
) -> RetryOutcome:
    """Call `fn` up to `policy.attempts` times; hand back the fallback instead of raising.

    A quota error ends the loop at once. A persistence error is never absorbed.
    """
    last_error: Optional[BaseException] = None
    attempt = 0
    while attempt < policy.attempts:
        attempt += 1
        try:
            return RetryOutcome(fn(), attempt, False, None)
        except PersistenceFailure:
            raise
        except ProviderError as exc:
            last_error = exc
            if not exc.retryable:
                log.warning("%s: %s (%s); not retrying", label or "generation", exc, exc.kind)
                break
            log.warning("%s attempt %d/%d failed (%s): %s", label or "generation", attempt, policy.attempts, exc.kind, exc)
        except MalformedOutput as exc:
            last_error = exc
            log.warning("%s attempt %d/%d produced unusable output: %s", label or "generation", attempt, policy.attempts, exc)
        except Exception as exc:
            last_error = exc
            log.exception("%s attempt %d/%d raised unexpectedly", label or "generation", attempt, policy.attempts)
        if attempt < policy.attempts:
            delay = backoff_delay(policy, attempt)
            log.info("%s retrying in %.2fs", label or "generation", delay)
            sleep(delay)

    log.warning("%s exhausted after %d attempt(s); using fallback", label or "generation", attempt)
    return RetryOutcome(_resolve(fallback), attempt, True, last_error)


def with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    fallback: Union[T, Callable[[], T]],
    sleep: Callable[[float], None] = time.sleep,
    label: str = "",
) -> T:
    return run_with_retry(fn, policy, fallback, sleep=sleep, label=label).value
