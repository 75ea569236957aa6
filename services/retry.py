"""Retry executor with exponential backoff and error classification."""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional, TypeVar

import httpx

from models.errors import (
    PermanentProviderError,
    ProviderError,
    ProviderUnavailable,
    SchedulingError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
ErrorKind = Literal["transient", "permanent"]

TRANSIENT = "transient"
PERMANENT = "permanent"

# 403 reasons Google uses for quota exhaustion rather than missing permission
RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded")


@dataclass
class RetryPolicy:
    """Backoff policy: delay = base_delay * multiplier ** (attempt - 1), capped."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.1  # +/- fraction of the computed delay

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays cannot be negative")

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        if retry_after:
            return min(retry_after, self.max_delay)
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, min(delay, self.max_delay))


def classify_http_status(status_code: int, reason: str = "") -> ErrorKind:
    """Classify an HTTP status from the calendar API."""
    if status_code in (408, 429) or status_code >= 500:
        return TRANSIENT
    if status_code == 403 and reason in RATE_LIMIT_REASONS:
        return TRANSIENT
    return PERMANENT


def parse_retry_after(headers: Any) -> Optional[float]:
    value = headers.get("retry-after") if headers else None
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def default_classifier(error: BaseException) -> ErrorKind:
    """
    Sort an exception into transient or permanent.

    Provider errors carry their own classification. Raw httpx errors are
    classified by status code; timeouts and connection failures are transient.
    Anything unrecognised is permanent so that programming errors surface.
    """
    if isinstance(error, ProviderError):
        return TRANSIENT if error.transient else PERMANENT
    if isinstance(error, SchedulingError):
        return PERMANENT
    if isinstance(error, httpx.HTTPStatusError):
        return classify_http_status(error.response.status_code)
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return TRANSIENT
    if isinstance(error, (TimeoutError, ConnectionError)):
        return TRANSIENT
    return PERMANENT


class RetryExecutor:
    """Runs an operation, retrying transient failures with backoff."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        classifier: Callable[[BaseException], ErrorKind] = default_classifier,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self.classifier = classifier
        self.sleep = sleep

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Execute ``operation`` until it succeeds or retrying stops making sense.

        Args:
            operation: Zero-argument callable performing the remote call
            operation_name: Name used in logs and raised errors
            context: Extra diagnostic fields logged with every attempt

        Returns:
            Whatever ``operation`` returns

        Raises:
            PermanentProviderError: on the first permanent HTTP failure
            Exception: any other permanent failure (engine errors such as
                InvalidRequest, programming errors) is re-raised unchanged
            ProviderUnavailable: when every attempt failed transiently
        """
        context = dict(context or {})
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                result = operation()
            except Exception as error:
                kind = self.classifier(error)
                if kind == PERMANENT:
                    logger.error(
                        "%s failed permanently on attempt %d: %s (context=%s)",
                        operation_name, attempt, error, context,
                    )
                    if isinstance(error, SchedulingError) or not isinstance(error, httpx.HTTPError):
                        raise
                    raise PermanentProviderError(
                        f"{operation_name} failed: {error}",
                        operation=operation_name,
                        status_code=_status_of(error),
                    ) from error

                last_error = error
                if attempt >= self.policy.max_attempts:
                    break

                delay = self.policy.delay_for(attempt, getattr(error, "retry_after", None))
                logger.warning(
                    "%s failed on attempt %d/%d: %s; retrying in %.2fs (context=%s)",
                    operation_name, attempt, self.policy.max_attempts, error, delay, context,
                )
                self.sleep(delay)
                continue

            if attempt > 1:
                logger.info("%s succeeded on attempt %d (context=%s)", operation_name, attempt, context)
            else:
                logger.debug("%s succeeded (context=%s)", operation_name, context)
            return result

        logger.error(
            "%s gave up after %d attempts: %s (context=%s)",
            operation_name, self.policy.max_attempts, last_error, context,
        )
        raise ProviderUnavailable(
            f"{operation_name} unavailable after {self.policy.max_attempts} attempts: {last_error}",
            operation=operation_name,
            attempts=self.policy.max_attempts,
            status_code=_status_of(last_error),
        ) from last_error


def _status_of(error: Optional[BaseException]) -> Optional[int]:
    if isinstance(error, ProviderError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None
