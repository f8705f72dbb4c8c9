"""Tests for issuefleet.tasks: the task model and the GitHub issue source."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from issuefleet.errors import ErrorType, GitHubError
from issuefleet.resilience import CircuitBreaker, ErrorBoundaryObserver, RetryPolicy
from issuefleet.tasks.model import Complexity, Domain, Task, TaskStatus
from issuefleet.tasks.source import GitHubTaskSource, Issue, issue_to_task, parse_issue_list

GH_JSON = json.dumps(
    [
        {"number": 12, "title": "[Frontend] Dark mode", "body": "Toggle", "labels": [{"name": "ui"}]},
        {"number": 3, "title": "Add OAuth", "body": None, "labels": []},
    ]
)


class TestTaskModel:
    def test_defaults(self):
        task = Task(id=1)
        assert task.status == TaskStatus.PENDING
        assert task.domain == Domain.UNKNOWN
        assert task.duration_seconds is None

    def test_terminal_statuses(self):
        assert TaskStatus.COMPLETED.terminal
        assert TaskStatus.FAILED.terminal
        assert not TaskStatus.RUNNING.terminal

    def test_duration(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        task = Task(id=1, started_at=start, completed_at=start + timedelta(seconds=90))
        assert task.duration_seconds == 90.0

    def test_to_dict(self):
        task = Task(id=5, title="T", domain=Domain.BACKEND, complexity=Complexity.SIMPLE, cost_usd=0.5)
        data = task.to_dict()
        assert data["id"] == 5
        assert data["domain"] == "backend"
        assert data["status"] == "pending"
        assert data["complexity"] == "simple"
        assert data["costUsd"] == 0.5
        assert data["startedAt"] is None
        json.dumps(data)


class TestParseIssues:
    def test_parse_issue_list(self):
        issues = parse_issue_list(GH_JSON)
        assert issues[0] == Issue(number=12, title="[Frontend] Dark mode", body="Toggle", labels=["ui"])
        assert issues[1].body == ""

    def test_plain_string_labels(self):
        raw = json.dumps([{"number": 1, "title": "x", "labels": ["bug"]}])
        assert parse_issue_list(raw)[0].labels == ["bug"]

    def test_empty_output(self):
        assert parse_issue_list("") == []

    def test_bad_json(self):
        with pytest.raises(GitHubError):
            parse_issue_list("{nope")

    def test_issue_to_task_classifies(self):
        task = issue_to_task(Issue(number=4, title="Fix flaky test suite", labels=[]))
        assert task.id == 4
        assert task.domain == Domain.TESTING
        assert task.status == TaskStatus.PENDING


class TestGitHubTaskSource:
    def _source(self) -> GitHubTaskSource:
        return GitHubTaskSource(
            "acme/app",
            RetryPolicy(max_retries=0),
            CircuitBreaker(threshold=3),
            ErrorBoundaryObserver(),
        )

    @pytest.mark.asyncio
    async def test_list_issues_sorted(self):
        source = self._source()
        run_gh = AsyncMock(return_value=GH_JSON)
        with patch("issuefleet.tasks.source.run_gh", run_gh):
            issues = await source.list_issues("ready")
        assert [i.number for i in issues] == [3, 12]
        args = run_gh.call_args.args
        assert args[:2] == ("issue", "list")
        assert args[args.index("--label") + 1] == "ready"
        assert args[args.index("--repo") + 1] == "acme/app"
        assert source.observer.get_metrics("github.list_issues").successes == 1

    @pytest.mark.asyncio
    async def test_create_issue_returns_number(self):
        source = self._source()
        run_gh = AsyncMock(return_value="https://github.com/acme/app/issues/57\n")
        with patch("issuefleet.tasks.source.run_gh", run_gh):
            number = await source.create_issue("Title", "Body", labels=["backend"])
        assert number == 57
        args = run_gh.call_args.args
        assert args[args.index("--label") + 1] == "backend"

    @pytest.mark.asyncio
    async def test_create_issue_unparseable_output(self):
        source = self._source()
        with patch("issuefleet.tasks.source.run_gh", AsyncMock(return_value="done!")):
            with pytest.raises(GitHubError):
                await source.create_issue("Title", "Body")

    @pytest.mark.asyncio
    async def test_failures_feed_breaker(self):
        source = self._source()
        failing = AsyncMock(side_effect=GitHubError("HTTP 502", 502, ErrorType.NETWORK))
        with patch("issuefleet.tasks.source.run_gh", failing):
            for _ in range(3):
                with pytest.raises(GitHubError):
                    await source.list_issues("ready")
        assert source.breaker.is_open()
        assert source.observer.get_metrics("github.list_issues").failures == 3
