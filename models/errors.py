"""Error taxonomy for the scheduling engine."""

from typing import Any, Optional


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling engine."""


class InvalidRequest(SchedulingError, ValueError):
    """Raised when a request or value violates its invariants."""


class ConfigError(SchedulingError):
    """Raised when scheduler configuration cannot be parsed."""


class SchedulingConflict(SchedulingError):
    """A slot was taken between search and commit."""


class ProviderError(SchedulingError):
    """Failure reported by the calendar provider."""

    transient = False

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.retry_after = retry_after  # seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": str(self),
            "type": type(self).__name__,
            "operation": self.operation,
            "status_code": self.status_code,
            "transient": self.transient,
        }


class TransientProviderError(ProviderError):
    """Timeouts, rate limiting and 5xx responses. Worth retrying."""

    transient = True


class PermanentProviderError(ProviderError):
    """Validation, auth and not-found failures. Never retried."""


class ProviderUnavailable(ProviderError):
    """Transient provider failures persisted past the last retry attempt."""

    transient = True

    def __init__(self, message: str, operation: Optional[str] = None, attempts: int = 0, **kwargs):
        super().__init__(message, operation=operation, **kwargs)
        self.attempts = attempts

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = self.attempts
        return data
