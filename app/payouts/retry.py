# app/payouts/retry.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import httpx

from app.payouts.errors import PayoutError, ProviderError, ProviderTransient
from services.metrics import increment_retry_attempt
from settings import settings

logger = logging.getLogger("payouts.retry")

T = TypeVar("T")

RETRYABLE_HTTP_CODES = {429, 500, 502, 503, 504}
TERMINAL_HTTP_CODES = {400, 401, 403, 404}


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    cap_delay: float = 10.0

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before `attempt` (1-based); the first attempt never waits."""
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * (2 ** (attempt - 1)), self.cap_delay)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=int(settings.RETRY_MAX_ATTEMPTS),
            base_delay=float(settings.RETRY_BASE_DELAY_S),
            cap_delay=float(settings.RETRY_CAP_DELAY_S),
        )


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    ok: bool
    attempts: int
    value: Optional[T] = None
    error: Optional[BaseException] = None


def is_retryable_http(code: Optional[int]) -> bool:
    if code is None:
        return False
    return code in RETRYABLE_HTTP_CODES or 500 <= code < 600


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderError) and exc.http_status is not None:
        if exc.http_status in TERMINAL_HTTP_CODES:
            return False
        if is_retryable_http(exc.http_status):
            return True
    if isinstance(exc, PayoutError):
        return bool(exc.retryable)

    # raw transport errors leaking out of a provider adapter
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, (TimeoutError, ConnectionResetError, ConnectionAbortedError)):
        return True
    return False


def run_with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    *,
    label: str = "operation",
    sleep: Callable[[float], Any] = time.sleep,
) -> RetryOutcome[T]:
    policy = policy or RetryPolicy.from_settings()
    last_exc: Optional[BaseException] = None
    attempt = 0

    while attempt < policy.max_attempts:
        attempt += 1
        delay = policy.delay_before(attempt)
        if delay > 0:
            sleep(delay)

        try:
            value = operation()
        except Exception as exc:
            last_exc = exc
            retryable = is_retryable(exc)
            increment_retry_attempt(label, "retryable_error" if retryable else "terminal_error")
            logger.warning(
                "retry_attempt_failed label=%s attempt=%s max_attempts=%s retryable=%s error=%s",
                label,
                attempt,
                policy.max_attempts,
                retryable,
                exc,
            )
            if not retryable:
                return RetryOutcome(ok=False, attempts=attempt, error=exc)
            continue

        increment_retry_attempt(label, "ok")
        return RetryOutcome(ok=True, attempts=attempt, value=value)

    logger.error("retry_exhausted label=%s attempts=%s error=%s", label, attempt, last_exc)
    if isinstance(last_exc, PayoutError):
        last_exc.retryable = True
    return RetryOutcome(ok=False, attempts=attempt, error=last_exc)


def with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    *,
    label: str = "operation",
    sleep: Callable[[float], Any] = time.sleep,
) -> T:
    """
    Run `operation` with backoff; terminal errors stop the loop early.

    Terminal errors are re-raised as-is. After exhausting retries the last error
    is re-raised with retryable=True; transport errors that are not PayoutErrors
    are wrapped in ProviderTransient first so the flag can be carried.
    """
    outcome = run_with_retry(operation, policy, label=label, sleep=sleep)
    if outcome.ok:
        return outcome.value  # type: ignore[return-value]

    exc = outcome.error
    assert exc is not None
    if not isinstance(exc, PayoutError) and is_retryable(exc):
        raise ProviderTransient(f"{type(exc).__name__}: {exc}") from exc
    raise exc
