"""Exception taxonomy raised across issuefleet.

Errors are tagged at the point where the failure is understood (agent exit
code, ``gh`` exit status, input validation) so that the resilience layer can
classify them without guessing from message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorType(str, Enum):
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    TIMEOUT = "timeout"
    NETWORK = "network"
    CRASH = "crash"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self not in (ErrorType.VALIDATION, ErrorType.QUOTA_EXCEEDED)


class IssueFleetError(Exception):
    """Base class for all issuefleet errors."""


class ValidationError(IssueFleetError):
    """Bad input. Never retried."""

    def __init__(self, message: str, recovery_hint: str = "") -> None:
        super().__init__(message)
        self.recovery_hint = recovery_hint


class BudgetExceeded(IssueFleetError):
    """Raised before work starts when it would push spend over the ceiling."""

    def __init__(self, spent: float, ceiling: float, estimated: float, task_id: int | None = None) -> None:
        self.spent = spent
        self.ceiling = ceiling
        self.estimated = estimated
        self.task_id = task_id
        target = f" for task #{task_id}" if task_id is not None else ""
        super().__init__(
            f"Budget exceeded{target}: spent ${spent:.2f} + estimated ${estimated:.2f} "
            f"> ceiling ${ceiling:.2f} (over by ${self.overage:.2f})"
        )

    @property
    def overage(self) -> float:
        return self.spent + self.estimated - self.ceiling


class AgentError(IssueFleetError):
    """Failure reported by the coding agent process."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType | None = None,
        recovery_hint: str = "",
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.recovery_hint = recovery_hint
        self.exit_code = exit_code


class GitHubError(IssueFleetError):
    """Failure talking to GitHub through the ``gh`` CLI."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_type: ErrorType | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type


class CircuitOpenError(IssueFleetError):
    """The circuit breaker guarding an operation is open."""

    def __init__(self, label: str, failure_count: int, retry_in: float = 0.0) -> None:
        super().__init__(
            f"Circuit breaker open for {label} after {failure_count} consecutive failures; "
            f"retry in {retry_in:.0f}s"
        )
        self.label = label
        self.failure_count = failure_count
        self.retry_in = retry_in


class DependencyCycleError(IssueFleetError):
    """The dependency graph has a cycle and cannot be ordered."""


class WorkspaceError(IssueFleetError):
    """An isolated worktree could not be created or removed."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path
