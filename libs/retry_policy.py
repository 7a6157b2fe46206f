# =============================================================================
# Retry Policy Evaluator
# =============================================================================
# Classifies failures of the external inference call as retryable or fatal
# and computes exponential backoff delays with jitter. Used by two layers:
# - call_with_retries: bounded inner loop (tenacity) around the raw HTTP call
# - DurableRetryPolicy: outer policy applied by the orchestrator, whose
#   attempt count and time budget are persisted in recorded history
# =============================================================================

"""Failure classification and exponential backoff."""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from libs.errors import InputValidationError, NotFoundError, TransientError

__all__ = [
    "RetryDecision",
    "DurableRetryPolicy",
    "classify",
    "status_code_of",
    "next_delay",
    "call_with_retries",
    "MAX_BACKOFF_EXPONENT",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BACKOFF_EXPONENT = 10
RETRYABLE_STATUS_CODES = frozenset({408, 429})


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of classifying a failure."""

    retryable: bool
    reason: str
    status_code: Optional[int] = None


def status_code_of(error: BaseException) -> Optional[int]:
    """Extract an HTTP status code from an error, if it carries one."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    code = getattr(error, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(error, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def classify(error: BaseException) -> RetryDecision:
    """
    Classify a failure.

    - Validation and not-found errors are fatal.
    - Timeouts and connection failures are retryable.
    - 408, 429 and any 5xx are retryable; other 4xx are fatal.
    - Anything without a status is treated as retryable (bounded by the
      caller's attempt cap).
    """
    if isinstance(error, (InputValidationError, NotFoundError)):
        return RetryDecision(False, type(error).__name__)

    if isinstance(error, httpx.TimeoutException):
        return RetryDecision(True, "timeout")

    status = status_code_of(error)
    if status is not None:
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            return RetryDecision(True, f"http {status}", status)
        if 400 <= status < 500:
            return RetryDecision(False, f"http {status}", status)
        return RetryDecision(True, f"http {status}", status)

    if isinstance(error, (httpx.TransportError, TransientError, ConnectionError, TimeoutError)):
        return RetryDecision(True, type(error).__name__)

    return RetryDecision(True, f"unclassified {type(error).__name__}")


def next_delay(
    attempt_index: int,
    base: float,
    cap: float,
    *,
    jitter: float = 0.2,
    min_delay: float = 0.1,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Backoff delay in seconds before retry number attempt_index (0-based).

    delay = min(cap, base * 2**min(attempt_index, 10)), then +/- jitter
    (uniform), floored at min_delay.
    """
    if attempt_index < 0:
        raise ValueError("attempt_index must be >= 0")
    exponent = min(attempt_index, MAX_BACKOFF_EXPONENT)
    delay = min(cap, base * (2 ** exponent))
    if jitter:
        source = rng or random
        delay *= 1 + source.uniform(-jitter, jitter)
    return max(min_delay, delay)


@dataclass(frozen=True)
class DurableRetryPolicy:
    """
    Outer retry policy applied around a whole orchestrator step.

    Attributes:
        first_retry_interval: Base delay (seconds) for the first retry
        max_attempts: Total attempts including the first one
        max_retry_interval: Cap on a single delay (seconds)
        retry_timeout: Ceiling on time since the first attempt (seconds);
            a retry that would start after it is not made
    """

    first_retry_interval: float = 2.0
    max_attempts: int = 4
    max_retry_interval: float = 30.0
    retry_timeout: float = 300.0

    @classmethod
    def from_settings(cls, settings) -> "DurableRetryPolicy":
        return cls(
            first_retry_interval=settings.first_retry_interval_seconds,
            max_attempts=settings.retry_max_attempts,
            max_retry_interval=settings.max_retry_interval_seconds,
            retry_timeout=settings.retry_timeout_seconds,
        )

    def delay_for(self, retry_index: int, rng: Optional[random.Random] = None) -> float:
        return next_delay(retry_index, self.first_retry_interval, self.max_retry_interval, rng=rng)


def call_with_retries(
    fn: Callable[[], T],
    *,
    max_attempts: int = 1,
    base_delay: float = 1.0,
    max_delay: float = 15.0,
    sleep: Callable[[float], None] = time.sleep,
    rng: Optional[random.Random] = None,
    description: str = "call",
) -> T:
    """
    Run fn with a bounded attempt loop.

    Fatal failures are raised immediately; retryable ones are retried until
    max_attempts calls have been made, then the last error is raised.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    def backoff(retry_state: RetryCallState) -> float:
        return next_delay(retry_state.attempt_number - 1, base_delay, max_delay, rng=rng)

    def log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "%s failed (%s), attempt %d/%d; retrying in %.2fs",
            description,
            classify(error).reason,
            retry_state.attempt_number,
            max_attempts,
            retry_state.next_action.sleep,
        )

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception(lambda e: isinstance(e, Exception) and classify(e).retryable),
        wait=backoff,
        sleep=sleep,
        before_sleep=log_retry,
        reraise=True,
    )
    return retrying(fn)
