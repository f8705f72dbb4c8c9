"""Run artifacts: per-task JSON reports and the final summary."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from rich.markup import escape

from issuefleet import log
from issuefleet.budget import BudgetTracker
from issuefleet.config import Config
from issuefleet.resilience import ErrorBoundaryObserver
from issuefleet.tasks.model import Task, TaskStatus


def init_artifacts_dir(cfg: Config, root: Path | None = None) -> str:
    """Create a timestamped artifacts directory and set it on *cfg*."""
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    artifacts = (root or Path(".")) / "artifacts" / f"run-{ts}"
    (artifacts / "reports").mkdir(parents=True, exist_ok=True)
    (artifacts / "logs").mkdir(parents=True, exist_ok=True)
    cfg.artifacts_dir = str(artifacts)
    log.info(f"Artifacts: {artifacts}")
    return cfg.artifacts_dir


def save_task_report(artifacts_dir: str, task: Task) -> Path | None:
    """Write ``reports/<id>.json`` for *task*."""
    if not artifacts_dir:
        return None
    report = task.to_dict()
    report["timestamp"] = datetime.now(timezone.utc).isoformat()
    path = Path(artifacts_dir) / "reports" / f"{task.id}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report, indent=2), encoding="utf-8")
    return path


def save_run_summary(
    artifacts_dir: str,
    tasks: list[Task],
    budget: BudgetTracker,
    observer: ErrorBoundaryObserver | None = None,
) -> Path | None:
    if not artifacts_dir:
        return None
    stats = budget.get_statistics()
    data: dict = {
        "tasks": {status.value: sum(1 for t in tasks if t.status == status) for status in TaskStatus},
        "spentUsd": budget.spent,
        "ceilingUsd": budget.ceiling,
        "costStatistics": vars(stats),
        "costByDomain": cost_by_domain(tasks),
    }
    if observer is not None:
        data["operations"] = {
            label: {
                "attempts": m.attempts,
                "successes": m.successes,
                "failures": m.failures,
                "failuresByType": {k.value: v for k, v in m.failures_by_type.items()},
                "lastError": m.last_error,
            }
            for label, m in observer.all_metrics().items()
        }
    path = Path(artifacts_dir) / "summary.json"
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def cost_by_domain(tasks: list[Task]) -> dict[str, float]:
    totals: dict[str, float] = {}
    for t in tasks:
        if t.cost_usd:
            totals[t.domain.value] = totals.get(t.domain.value, 0.0) + t.cost_usd
    return totals


def show_summary(
    tasks: list[Task],
    budget: BudgetTracker,
    started_at: datetime,
    observer: ErrorBoundaryObserver | None = None,
) -> None:
    """Print the final run summary."""
    completed = [t for t in tasks if t.status == TaskStatus.COMPLETED]
    failed = [t for t in tasks if t.status == TaskStatus.FAILED]
    not_started = [t for t in tasks if t.status == TaskStatus.PENDING]
    elapsed = (datetime.now(timezone.utc) - started_at).total_seconds()

    log.console.print("")
    log.console.print("[bold]============================================[/bold]")
    log.console.print(
        f"[green]{len(completed)} completed[/green], [red]{len(failed)} failed[/red]"
        + (f", [yellow]{len(not_started)} not started[/yellow]" if not_started else "")
        + f" in {elapsed / 60:.1f} min"
    )
    log.console.print("[bold]============================================[/bold]")

    log.console.print("[bold]>>> Cost Summary[/bold]")
    log.console.print(f"Spent:   ${budget.spent:.2f} of ${budget.ceiling:.2f}")
    stats = budget.get_statistics()
    if stats.total:
        log.console.print(
            f"Per task: min ${stats.min:.2f}, median ${stats.median:.2f}, p90 ${stats.p90:.2f}, max ${stats.max:.2f}"
        )
    for domain, cost in sorted(cost_by_domain(tasks).items()):
        log.console.print(f"  {domain:<15} ${cost:.2f}")

    if completed:
        files = sum(t.files_changed for t in completed)
        added = sum(t.lines_added for t in completed)
        removed = sum(t.lines_removed for t in completed)
        log.console.print("")
        log.console.print("[bold]>>> Code Impact[/bold]")
        log.console.print(f"{files} files changed, [green]+{added}[/green] [red]-{removed}[/red]")
        for t in completed:
            if t.pr_url:
                log.console.print(f"  #{t.id} {t.pr_url}")

    if failed:
        log.console.print("")
        log.console.print("[bold]>>> Failed Tasks[/bold]")
        for t in failed:
            log.console.print(f"  [red]✗[/red] #{t.id} {escape(t.title)}: {escape(t.error or 'unknown error')}")

    if observer is not None and observer.all_metrics():
        log.console.print("")
        log.console.print("[bold]>>> Operations[/bold]")
        for label, m in sorted(observer.all_metrics().items()):
            breakdown = ", ".join(f"{k.value}={v}" for k, v in m.failures_by_type.items())
            line = f"  {escape(label)}: {m.successes}/{m.attempts} ok"
            if breakdown:
                line += f" ({escape(breakdown)})"
            log.console.print(line)

    log.console.print("[bold]============================================[/bold]")
