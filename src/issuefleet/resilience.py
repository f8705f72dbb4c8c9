"""Retry, backoff and circuit breaking around fallible remote operations."""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from issuefleet import log
from issuefleet.errors import (
    AgentError,
    BudgetExceeded,
    CircuitOpenError,
    DependencyCycleError,
    ErrorType,
    GitHubError,
    ValidationError,
)
from issuefleet.failure_patterns import match_error_text

T = TypeVar("T")

RECOVERY_HINTS: dict[ErrorType, str] = {
    ErrorType.VALIDATION: "Fix the input; retrying will not help.",
    ErrorType.RATE_LIMIT: "API rate limit reached. Waiting before retry; consider lowering max_parallel.",
    ErrorType.QUOTA_EXCEEDED: "Quota or budget exhausted. Raise the limit before running again.",
    ErrorType.TIMEOUT: "Operation timed out. Increase timeout_minutes or split the task.",
    ErrorType.NETWORK: "Network connectivity issue. Check the connection and endpoint availability.",
    ErrorType.CRASH: "Process exited unexpectedly. This may be transient or a resource constraint.",
    ErrorType.UNKNOWN: "Unexpected error. Check logs for details.",
}


@dataclass
class ClassifiedError:
    type: ErrorType
    message: str
    retryable: bool
    recovery_hint: str
    original: BaseException


def _error_type_of(exc: BaseException) -> ErrorType:
    # Structured errors first, text matching only for opaque failures.
    if isinstance(exc, (ValidationError, DependencyCycleError)):
        return ErrorType.VALIDATION
    if isinstance(exc, BudgetExceeded):
        return ErrorType.QUOTA_EXCEEDED
    if isinstance(exc, (AgentError, GitHubError)) and exc.error_type is not None:
        return exc.error_type
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorType.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorType.NETWORK
    return match_error_text(str(exc))


def classify_error(exc: BaseException) -> ClassifiedError:
    """Classify *exc* into exactly one :class:`ErrorType`."""
    error_type = _error_type_of(exc)
    hint = getattr(exc, "recovery_hint", "") or RECOVERY_HINTS[error_type]
    return ClassifiedError(
        type=error_type,
        message=str(exc) or type(exc).__name__,
        retryable=error_type.retryable,
        recovery_hint=hint,
        original=exc,
    )


class ExponentialBackoff:
    """Bounded exponential backoff with up to 25% jitter.

    :meth:`next_delay` returns ``None`` once the retries are used up.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 32.0,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._rng = rng
        self._attempt = 0

    def next_delay(self) -> float | None:
        if self._attempt >= self.max_retries:
            return None
        capped = min(self.base_delay * (2 ** self._attempt), self.max_delay)
        self._attempt += 1
        return capped + capped * 0.25 * self._rng()

    def reset(self) -> None:
        self._attempt = 0

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_retries - self._attempt)

    @property
    def current_attempt(self) -> int:
        return self._attempt


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class BreakerSnapshot:
    state: BreakerState
    failure_count: int
    threshold: int


class CircuitBreaker:
    """Fails fast after *threshold* consecutive failures.

    The open -> half_open transition happens lazily inside :meth:`is_open`
    once *reset_timeout* seconds have passed. In half_open the next outcome
    decides: success closes the breaker, failure reopens it.
    """

    def __init__(
        self,
        threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "breaker",
    ) -> None:
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self.name = name
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def is_open(self) -> bool:
        if self._state == BreakerState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.reset_timeout:
                log.info(f"Circuit breaker {self.name}: open -> half_open")
                self._state = BreakerState.HALF_OPEN
                self._opened_at = None
        return self._state == BreakerState.OPEN

    def retry_in(self) -> float:
        """Seconds until an open breaker may probe again."""
        if self._state != BreakerState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.reset_timeout - (self._clock() - self._opened_at))

    def record_success(self) -> None:
        self._failures = 0
        if self._state == BreakerState.HALF_OPEN:
            log.info(f"Circuit breaker {self.name}: half_open -> closed")
            self._state = BreakerState.CLOSED

    def record_failure(self) -> None:
        self._failures += 1
        if self._state == BreakerState.HALF_OPEN:
            log.warn(f"Circuit breaker {self.name}: probe failed, reopening")
            self._state = BreakerState.OPEN
            self._opened_at = self._clock()
        elif self._state == BreakerState.CLOSED and self._failures >= self.threshold:
            log.warn(f"Circuit breaker {self.name}: opened after {self._failures} consecutive failures")
            self._state = BreakerState.OPEN
            self._opened_at = self._clock()

    def get_state(self) -> BreakerSnapshot:
        return BreakerSnapshot(self._state, self._failures, self.threshold)

    def reset(self) -> None:
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at = None


@dataclass
class OperationMetrics:
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    failures_by_type: dict[ErrorType, int] = field(default_factory=dict)
    last_error: str = ""


class ErrorBoundaryObserver:
    """Accumulates per-label attempt outcomes from :func:`with_error_boundary`."""

    def __init__(self) -> None:
        self._metrics: dict[str, OperationMetrics] = {}

    def record_attempt(
        self,
        label: str,
        success: bool,
        error_type: ErrorType | None = None,
        error: str = "",
    ) -> None:
        m = self._metrics.setdefault(label, OperationMetrics())
        m.attempts += 1
        if success:
            m.successes += 1
            return
        m.failures += 1
        if error_type is not None:
            m.failures_by_type[error_type] = m.failures_by_type.get(error_type, 0) + 1
        m.last_error = error

    def get_metrics(self, label: str) -> OperationMetrics:
        return self._metrics.get(label, OperationMetrics())

    def all_metrics(self) -> dict[str, OperationMetrics]:
        return dict(self._metrics)

    def reset(self) -> None:
        self._metrics.clear()


@dataclass
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 32.0


async def with_error_boundary(
    operation: Callable[[], Awaitable[T]],
    label: str,
    policy: RetryPolicy | None = None,
    breaker: CircuitBreaker | None = None,
    observer: ErrorBoundaryObserver | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Run *operation* with classified retries and optional circuit breaking.

    Raises :class:`CircuitOpenError` without calling *operation* when
    *breaker* is open. Non-retryable failures are re-raised at once;
    retryable ones are retried until the backoff is exhausted, then the
    last error is re-raised.
    """
    policy = policy or RetryPolicy()
    backoff = ExponentialBackoff(policy.max_retries, policy.base_delay, policy.max_delay)

    while True:
        if breaker is not None and breaker.is_open():
            log.error(f"{label}: circuit breaker open, failing fast")
            raise CircuitOpenError(label, breaker.failure_count, breaker.retry_in())

        try:
            result = await operation()
        except Exception as exc:
            classified = classify_error(exc)
            if observer is not None:
                observer.record_attempt(label, False, classified.type, classified.message)
            if breaker is not None:
                breaker.record_failure()

            if not classified.retryable:
                log.error(
                    f"{label}: non-retryable {classified.type.value} error",
                    hint=classified.recovery_hint,
                )
                raise

            delay = backoff.next_delay()
            if delay is None:
                log.error(
                    f"{label}: retries exhausted after {backoff.current_attempt + 1} attempts",
                    error_type=classified.type.value,
                )
                raise

            log.warn(
                f"{label}: {classified.type.value} error, retrying in {delay:.1f}s "
                f"({backoff.current_attempt}/{policy.max_retries})",
                hint=classified.recovery_hint,
            )
            await sleep(delay)
            continue

        backoff.reset()
        if breaker is not None:
            breaker.record_success()
        if observer is not None:
            observer.record_attempt(label, True)
        return result
