"""Task data model shared by the scheduler, planner and runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class Domain(str, Enum):
    BACKEND = "backend"
    FRONTEND = "frontend"
    DATABASE = "database"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    INFRASTRUCTURE = "infrastructure"
    SECURITY = "security"
    UNKNOWN = "unknown"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


@dataclass
class Task:
    id: int
    title: str = ""
    body: str = ""
    labels: list[str] = field(default_factory=list)
    domain: Domain = Domain.UNKNOWN
    status: TaskStatus = TaskStatus.PENDING
    cost_usd: float | None = None
    depends_on: list[int] = field(default_factory=list)
    complexity: Complexity | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str = ""

    # Execution details filled in by the runner
    current_action: str = ""
    agent_session_id: str = ""
    worktree_path: str = ""
    branch: str = ""
    pr_url: str = ""
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "labels": list(self.labels),
            "domain": self.domain.value,
            "status": self.status.value,
            "costUsd": self.cost_usd,
            "dependsOn": list(self.depends_on),
            "complexity": self.complexity.value if self.complexity else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "branch": self.branch,
            "prUrl": self.pr_url,
            "sessionId": self.agent_session_id,
            "filesChanged": self.files_changed,
            "linesAdded": self.lines_added,
            "linesRemoved": self.lines_removed,
        }
