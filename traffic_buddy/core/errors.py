"""Terminal error types raised by Test Traffic Buddy.

Every error carries the pipeline ``stage`` that produced it (``cache``,
``dedup``, ``admission``, ``retry`` or ``policy``) so statistics and reports
can attribute failures.
"""

from typing import Optional


class TrafficBuddyError(Exception):
    """Base class for all admission-control errors."""

    def __init__(self, message: str, stage: str = "") -> None:
        super().__init__(message)
        self.stage = stage


class ConfigurationError(TrafficBuddyError):
    """Unknown environment, malformed policy table, or a missing mandatory mock.

    Raised at startup for bad configuration; the run must abort rather than
    proceed with undefined limits.
    """

    def __init__(self, message: str, errors: Optional[list] = None, stage: str = "policy") -> None:
        super().__init__(message, stage=stage)
        self.errors = list(errors or [])


class AdmissionTimeout(TrafficBuddyError):
    """A caller waited longer than its maximum wait for admission or for a shared call."""

    def __init__(self, message: str, waited: float = 0.0, stage: str = "admission") -> None:
        super().__init__(message, stage=stage)
        self.waited = waited


class RetryExhausted(TrafficBuddyError):
    """The real call failed on every attempt, retries included."""

    def __init__(self, last_error: BaseException, attempt_count: int) -> None:
        super().__init__(
            f"Request failed after {attempt_count} attempts: {last_error!r}",
            stage="retry",
        )
        self.last_error = last_error
        self.attempt_count = attempt_count


class NonRetryableUpstreamError(TrafficBuddyError):
    """The real call failed with an error class that is never retried."""

    def __init__(self, error: BaseException, attempt_count: int = 1) -> None:
        super().__init__(f"Non-retryable upstream error: {error!r}", stage="retry")
        self.error = error
        self.attempt_count = attempt_count


class ConditionTimeout(TrafficBuddyError):
    """A polled condition did not become true within its timeout."""

    def __init__(self, description: str, timeout: float) -> None:
        super().__init__(f"Timeout waiting for {description} after {timeout}s", stage="admission")
        self.description = description
        self.timeout = timeout


class UpstreamHTTPError(Exception):
    """HTTP failure reported by a request callable.

    Collaborators raise this (or any exception exposing ``status_code``) so
    the retry engine can tell upstream throttling from validation errors.
    """

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code


def is_infrastructure_failure(exc: BaseException) -> bool:
    """Return True when ``exc`` should count as an infrastructure failure.

    Exhausted retries, admission timeouts and configuration problems are
    infrastructure failures; a non-retryable upstream error is a test failure.
    """
    return isinstance(exc, (RetryExhausted, AdmissionTimeout, ConfigurationError, ConditionTimeout))
