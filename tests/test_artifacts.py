"""Tests for issuefleet.artifacts: reports and the run summary."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from issuefleet import log
from issuefleet.artifacts import (
    cost_by_domain,
    init_artifacts_dir,
    save_run_summary,
    save_task_report,
    show_summary,
)
from issuefleet.budget import BudgetTracker
from issuefleet.config import Config
from issuefleet.errors import ErrorType
from issuefleet.resilience import ErrorBoundaryObserver
from issuefleet.tasks.model import Domain, TaskStatus


def _finished(make_task):
    ok = make_task(1, title="Add [beta] flag", domain=Domain.BACKEND)
    ok.status = TaskStatus.COMPLETED
    ok.cost_usd = 1.5
    ok.files_changed = 2
    ok.lines_added = 10
    ok.lines_removed = 1
    ok.pr_url = "https://github.com/acme/app/pull/11"
    bad = make_task(2, title="Style [red] button", domain=Domain.FRONTEND)
    bad.status = TaskStatus.FAILED
    bad.cost_usd = 0.5
    bad.error = "agent exited 1: [bold]nope"
    return [ok, bad]


def test_init_artifacts_dir(tmp_path: Path):
    cfg = Config()
    path = Path(init_artifacts_dir(cfg, tmp_path))
    assert cfg.artifacts_dir == str(path)
    assert path.parent == tmp_path / "artifacts"
    assert path.name.startswith("run-")
    assert (path / "reports").is_dir()
    assert (path / "logs").is_dir()


def test_save_task_report(tmp_path: Path, make_task):
    task = make_task(7, title="Fix it", domain=Domain.TESTING)
    path = save_task_report(str(tmp_path), task)
    assert path == tmp_path / "reports" / "7.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["id"] == 7
    assert data["domain"] == "testing"
    assert "timestamp" in data


def test_save_task_report_without_dir(make_task):
    assert save_task_report("", make_task(1)) is None


def test_save_run_summary(tmp_path: Path, make_task):
    tasks = _finished(make_task)
    budget = BudgetTracker(10.0)
    budget.record_cost(1.5)
    budget.record_cost(0.5)
    observer = ErrorBoundaryObserver()
    observer.record_attempt("agent(sonnet)", False, ErrorType.RATE_LIMIT, "429")
    observer.record_attempt("agent(sonnet)", True)

    path = save_run_summary(str(tmp_path), tasks, budget, observer)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["tasks"]["completed"] == 1
    assert data["tasks"]["failed"] == 1
    assert data["spentUsd"] == 2.0
    assert data["costStatistics"]["total"] == 2.0
    assert data["costByDomain"] == {"backend": 1.5, "frontend": 0.5}
    assert data["operations"]["agent(sonnet)"]["failuresByType"] == {"rate_limit": 1}


def test_cost_by_domain(make_task):
    assert cost_by_domain(_finished(make_task)) == {"backend": 1.5, "frontend": 0.5}


def test_show_summary_escapes_markup(make_task):
    tasks = _finished(make_task)
    budget = BudgetTracker(10.0)
    budget.record_cost(2.0)
    observer = ErrorBoundaryObserver()
    observer.record_attempt("github.create_pr", True)

    with log.console.capture() as capture:
        show_summary(tasks, budget, datetime.now(timezone.utc), observer)
    out = capture.get()

    assert "1 completed" in out
    assert "1 failed" in out
    assert "https://github.com/acme/app/pull/11" in out
    assert "Style [red] button" in out
    assert "[bold]nope" in out
    assert "github.create_pr: 1/1 ok" in out
