"""Backoff and retry engine built on tenacity.

Wraps a real call with exponential backoff. Only upstream throttling
(429/503-style answers) and transient network errors are retried; anything
else propagates on the first attempt without consuming retry budget.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple, Type

import requests
import tenacity
from tenacity import RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from traffic_buddy.core.clock import MonotonicClock
from traffic_buddy.core.errors import NonRetryableUpstreamError, RetryExhausted, TrafficBuddyError
from traffic_buddy.utils.logger import get_logger

THROTTLE_STATUSES = frozenset({429, 503})

THROTTLE_MESSAGE_MARKERS = (
    "rate limit",
    "too many requests",
    "quota exceeded",
    "throttled",
)

DEFAULT_TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)


def status_of(exc: BaseException) -> Optional[int]:
    """Extract an HTTP status code from an exception, if it carries one."""
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
    return None


@dataclass(frozen=True)
class ErrorClassifier:
    """Sorts failures of the real call into retryable and terminal."""

    transient_errors: Tuple[Type[BaseException], ...] = DEFAULT_TRANSIENT_ERRORS
    throttle_statuses: frozenset = THROTTLE_STATUSES

    def is_throttle_error(self, exc: BaseException) -> bool:
        status = status_of(exc)
        if status is not None:
            return status in self.throttle_statuses
        message = str(exc).lower()
        return any(marker in message for marker in THROTTLE_MESSAGE_MARKERS)

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, TrafficBuddyError):
            return False
        if self.is_throttle_error(exc):
            return True
        return isinstance(exc, self.transient_errors)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape."""

    retry_attempts: int = 3
    backoff_multiplier: float = 1.5
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    jitter: float = 0.0

    def __post_init__(self):
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be non-negative")
        if not 0 <= self.jitter <= 1 - 1 / self.backoff_multiplier:
            raise ValueError("jitter must be between 0 and 1 - 1/backoff_multiplier")

    def backoff_delay(self, failures: int, factor: float = 1.0) -> float:
        """Delay after the ``failures``-th failed attempt, scaled by ``factor`` and capped.

        The first retry waits ``base_delay_seconds``; each later one waits
        ``backoff_multiplier`` times longer.
        """
        raw = self.base_delay_seconds * self.backoff_multiplier ** (failures - 1) * factor
        return min(raw, self.max_delay_seconds)

    def max_backoff(self) -> float:
        """Longest delay a call under this policy can wait between attempts."""
        if self.retry_attempts < 2:
            return 0.0
        return self.backoff_delay(self.retry_attempts - 1)


class _ExponentialBackoff(wait_base):
    """Delay after failure n = base * multiplier^(n-1), optionally jittered downwards."""

    def __init__(self, policy: RetryPolicy, rng: random.Random) -> None:
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        factor = self.rng.uniform(1 - self.policy.jitter, 1.0) if self.policy.jitter else 1.0
        # Jitter before the cap keeps the sequence non-decreasing
        return self.policy.backoff_delay(retry_state.attempt_number, factor)


@dataclass
class RetryOutcome:
    """Value returned by a retried call and how many attempts it took."""

    value: Any
    attempts: int
    delays: list = field(default_factory=list)


class RetryEngine:
    """Runs a callable under the retry policy.

    Example:
        >>> engine = RetryEngine(RetryPolicy(retry_attempts=3))
        >>> engine.run(lambda: "ok").value
        'ok'
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        clock=None,
        classifier: Optional[ErrorClassifier] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.clock = clock or MonotonicClock()
        self.classifier = classifier or ErrorClassifier()
        self.rng = rng or random.Random()
        self.logger = get_logger("retry.engine")

    def _retrying(self, delays: list, label: str) -> tenacity.Retrying:
        def before_sleep(retry_state: RetryCallState) -> None:
            wait_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
            delays.append(wait_s)
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            self.logger.warning(
                f"Request {label} failed (attempt {retry_state.attempt_number}/{self.policy.retry_attempts}): "
                f"{exc!r}; retrying in {wait_s:.3f}s"
            )

        return tenacity.Retrying(
            stop=stop_after_attempt(self.policy.retry_attempts),
            wait=_ExponentialBackoff(self.policy, self.rng),
            retry=retry_if_exception(self.classifier.is_retryable),
            sleep=self.clock.sleep,
            before_sleep=before_sleep,
            reraise=False,
        )

    def run(
        self,
        fn: Callable[[], Any],
        label: str = "",
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> RetryOutcome:
        """Call ``fn`` until it succeeds, fails terminally or the budget runs out.

        Args:
            fn: Zero-argument callable performing the real request
            label: Name used in log lines
            on_attempt: Called with the attempt number before each attempt

        Returns:
            RetryOutcome carrying the value and the attempt count

        Raises:
            NonRetryableUpstreamError: On an error class excluded from retry
            RetryExhausted: When every attempt failed with a retryable error
        """
        delays = []
        attempts = 0
        try:
            for attempt in self._retrying(delays, label):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if on_attempt is not None:
                        on_attempt(attempts)
                    value = fn()
                if not attempt.retry_state.outcome.failed:
                    return RetryOutcome(value=value, attempts=attempts, delays=delays)
        except tenacity.RetryError as retry_error:
            last_error = retry_error.last_attempt.exception()
            self.logger.error(f"Request {label} exhausted {attempts} attempts: {last_error!r}")
            raise RetryExhausted(last_error, attempts) from last_error
        except TrafficBuddyError:
            raise
        except Exception as exc:
            self.logger.warning(f"Request {label} failed with non-retryable error: {exc!r}")
            raise NonRetryableUpstreamError(exc, attempts) from exc
        raise AssertionError("tenacity loop ended without an outcome")
