"""Load work items from GitHub issues and turn them into tasks."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from issuefleet.domain import classify_task
from issuefleet.errors import GitHubError, ErrorType
from issuefleet.git_ops import run_gh
from issuefleet.resilience import CircuitBreaker, ErrorBoundaryObserver, RetryPolicy, with_error_boundary
from issuefleet.tasks.model import Task

_ISSUE_URL_RE = re.compile(r"/issues/(\d+)\s*$")


@dataclass
class Issue:
    number: int
    title: str
    body: str = ""
    labels: list[str] = field(default_factory=list)


def issue_to_task(issue: Issue) -> Task:
    """Build a pending task and classify its domain."""
    result = classify_task(issue.title, issue.body, issue.labels)
    return Task(
        id=issue.number,
        title=issue.title,
        body=issue.body,
        labels=list(issue.labels),
        domain=result.domain,
    )


def parse_issue_list(raw: str) -> list[Issue]:
    """Parse ``gh issue list --json number,title,body,labels`` output."""
    try:
        data = json.loads(raw or "[]")
    except json.JSONDecodeError as exc:
        raise GitHubError(f"Unexpected gh output: {exc}", error_type=ErrorType.UNKNOWN) from exc
    issues: list[Issue] = []
    for item in data:
        labels = [lbl["name"] if isinstance(lbl, dict) else str(lbl) for lbl in item.get("labels") or []]
        issues.append(
            Issue(
                number=int(item["number"]),
                title=item.get("title", ""),
                body=item.get("body") or "",
                labels=labels,
            )
        )
    return issues


class GitHubTaskSource:
    """Issue queries through ``gh``, guarded by their own circuit breaker."""

    def __init__(
        self,
        repo: str,
        policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        observer: ErrorBoundaryObserver | None = None,
    ) -> None:
        self.repo = repo
        self.policy = policy or RetryPolicy()
        self.breaker = breaker or CircuitBreaker(name="github")
        self.observer = observer

    async def _gh(self, label: str, *args: str) -> str:
        return await with_error_boundary(
            lambda: run_gh(*args, action=label),
            label,
            self.policy,
            self.breaker,
            self.observer,
        )

    async def list_issues(self, label: str, limit: int = 100) -> list[Issue]:
        """Open issues carrying *label*, oldest first."""
        raw = await self._gh(
            "github.list_issues",
            "issue",
            "list",
            "--repo",
            self.repo,
            "--label",
            label,
            "--state",
            "open",
            "--limit",
            str(limit),
            "--json",
            "number,title,body,labels",
        )
        issues = parse_issue_list(raw)
        issues.sort(key=lambda i: i.number)
        return issues

    async def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> int:
        """Open an issue and return its number."""
        args = ["issue", "create", "--repo", self.repo, "--title", title, "--body", body]
        for lbl in labels or []:
            args += ["--label", lbl]
        out = (await self._gh("github.create_issue", *args)).strip()
        m = _ISSUE_URL_RE.search(out)
        if not m:
            raise GitHubError(f"Could not read issue number from gh output: {out!r}", error_type=ErrorType.UNKNOWN)
        return int(m.group(1))
