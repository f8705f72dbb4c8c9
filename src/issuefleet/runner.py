"""Runner: event-driven parallel execution of tasks in isolated worktrees."""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime, timezone
from pathlib import Path

from rich.markup import escape

from issuefleet import log
from issuefleet.artifacts import save_run_summary, save_task_report, show_summary
from issuefleet.budget import BudgetTracker
from issuefleet.config import Config, resolve_repo_root
from issuefleet.conflicts import detect_conflicts
from issuefleet.depgraph import DependencyGraph
from issuefleet.engines.base import AgentOptions, EngineBase
from issuefleet.errors import BudgetExceeded, DependencyCycleError, WorkspaceError
from issuefleet.git_ops import cleanup_workspace, commit_all, create_pull_request, create_workspace, diff_stats
from issuefleet.model_selector import select_model
from issuefleet.planner import PlannerResult, build_tasks, decompose
from issuefleet.prompts import build_pr_body, build_system_prompt, build_task_prompt
from issuefleet.resilience import CircuitBreaker, ErrorBoundaryObserver, RetryPolicy, with_error_boundary
from issuefleet.scheduler import (
    complete_task,
    create_scheduler,
    enqueue_task,
    fill_slots,
    free_slot_count,
    has_work,
    running_tasks,
)
from issuefleet.tasks.model import Task, TaskStatus
from issuefleet.tasks.source import GitHubTaskSource, issue_to_task


class Runner:
    """Drives tasks through the scheduler until none are left.

    Completion of one task immediately refills the freed slot; there is no
    polling loop. One task's failure never aborts its siblings. Only an
    unaffordable next task or a dependency cycle aborts the run.
    """

    def __init__(
        self,
        cfg: Config,
        engine: EngineBase,
        source: GitHubTaskSource | None = None,
        repo_dir: Path | None = None,
    ) -> None:
        self.cfg = cfg
        self.engine = engine
        self.repo_dir = (repo_dir or Path(cfg.repo_root or resolve_repo_root())).resolve()

        self.state = create_scheduler(cfg.max_parallel)
        self.budget = BudgetTracker(cfg.max_total_budget_usd, per_task_cap=cfg.agent_budget_usd or None)
        self.observer = ErrorBoundaryObserver() if cfg.metrics_enabled else None
        self.policy = RetryPolicy(cfg.max_retries, cfg.retry_base_delay, cfg.retry_max_delay)
        self.agent_breaker = CircuitBreaker(cfg.breaker_threshold, cfg.breaker_reset_seconds, name="agent")
        self.github_breaker = CircuitBreaker(cfg.breaker_threshold, cfg.breaker_reset_seconds, name="github")
        self.source = source or GitHubTaskSource(cfg.repo, self.policy, self.github_breaker, self.observer)

        self.tasks: dict[int, Task] = {}
        self.graph: DependencyGraph | None = None
        self.started_at = datetime.now(timezone.utc)
        self._admitted: set[int] = set()
        self._completed_ids: set[int] = set()
        self._in_flight: dict[int, asyncio.Task[bool]] = {}
        self._done: asyncio.Event | None = None
        self._abort: BaseException | None = None
        self._stop_requested = False
        self._interrupt_count = 0

    # ── entry points ─────────────────────────────────────────────

    async def run_label(self, label: str) -> bool:
        """Run every open issue carrying *label*."""
        log.info(f"Fetching issues labelled '{escape(label)}' from {self.cfg.repo}…")
        issues = await self.source.list_issues(label)
        if not issues:
            log.warn("No matching issues found")
            return True
        tasks = [issue_to_task(i) for i in issues]
        for t in tasks:
            log.info(f"#{t.id} {escape(t.title)}", domain=t.domain.value)
        if self.cfg.dry_run:
            self.preview(tasks)
            return True
        return await self.execute(tasks)

    def preview(self, tasks: list[Task]) -> None:
        """Show the first scheduling pass without running anything."""
        state = create_scheduler(self.cfg.max_parallel)
        for t in tasks:
            enqueue_task(state, Task(id=t.id, title=t.title, body=t.body, labels=t.labels, domain=t.domain))
        first = fill_slots(state)
        log.info("[DRY RUN] Would start: " + (", ".join(f"#{t.id}" for t in first) or "nothing"))
        for tid, reason in sorted(state.block_reasons.items()):
            log.info(f"[DRY RUN] #{tid} waits: {escape(reason)}")

    async def plan(self, directive: str) -> tuple[PlannerResult, list[Task], DependencyGraph]:
        """Decompose *directive* and check the plan for cycles.

        Tasks carry provisional ids equal to their 1-based plan position.
        """
        options = AgentOptions(
            model=self.cfg.planner_model,
            budget_ceiling=self.cfg.planner_budget_usd,
            work_dir=self.repo_dir,
            timeout=self.cfg.timeout_seconds,
            skip_permissions=False,
        )
        result = await with_error_boundary(
            lambda: decompose(directive, self.cfg.repo, self.engine, options),
            "planner",
            self.policy,
            self.agent_breaker,
            self.observer,
        )
        self.budget.record_overhead(result.cost_usd)
        tasks, graph = build_tasks(result.tasks, list(range(1, len(result.tasks) + 1)))
        if graph.has_cycles():
            raise DependencyCycleError("Planner produced a dependency cycle:\n" + graph.visualize())
        return result, tasks, graph

    async def run_plan(self, directive: str) -> bool:
        """Plan, open one issue per planned task, then run them in dependency order."""
        result, _, _ = await self.plan(directive)
        ids: list[int] = []
        for p in result.tasks:
            number = await self.source.create_issue(p.title, p.body, labels=p.labels)
            log.info(f"Created issue #{number}: {escape(p.title)}")
            ids.append(number)
        tasks, graph = build_tasks(result.tasks, ids)
        log.console.print(escape(graph.visualize()))
        return await self.execute(tasks, graph)

    async def execute(self, tasks: list[Task], graph: DependencyGraph | None = None) -> bool:
        """Run *tasks* to completion. Returns ``True`` when all of them succeeded."""
        if graph is not None and graph.has_cycles():
            raise DependencyCycleError("Cannot execute: dependency graph has cycles")

        self.tasks = {t.id: t for t in tasks}
        self.graph = graph
        self._done = asyncio.Event()

        conflicts = detect_conflicts(tasks)
        for tid, peers in sorted(conflicts.items()):
            log.warn(f"Task #{tid} shares files with {', '.join(f'#{p}' for p in peers)}; they will not run together")

        log.info(f"Running {len(tasks)} task(s) with up to {self.cfg.max_parallel} agents…")
        cap = self.budget.per_task_cap
        if not self.budget.history and cap is not None and cap < self.budget.ceiling:
            log.info(
                f"No cost history yet: estimating each task at the per-agent cap ${cap:.2f} "
                f"instead of the whole ${self.budget.ceiling:.2f} budget"
            )
        self._install_signal_handlers()
        try:
            self._admit_ready()
            self._schedule()
            self._check_done()
            await self._done.wait()
        finally:
            self._restore_signal_handlers()

        if self.cfg.artifacts_dir:
            save_run_summary(self.cfg.artifacts_dir, list(self.tasks.values()), self.budget, self.observer)
        show_summary(list(self.tasks.values()), self.budget, self.started_at, self.observer)

        if self._abort is not None:
            raise self._abort
        return all(t.status == TaskStatus.COMPLETED for t in self.tasks.values())

    # ── scheduling ───────────────────────────────────────────────

    def _admit_ready(self) -> None:
        """Queue tasks whose dependencies have all completed."""
        if self.graph is None:
            ready = list(self.tasks)
        else:
            ready = self.graph.get_ready_tasks(self._completed_ids)
        for tid in ready:
            task = self.tasks.get(tid)
            if task is None or tid in self._admitted or task.status != TaskStatus.PENDING:
                continue
            self._admitted.add(tid)
            enqueue_task(self.state, task)

    def _schedule(self) -> None:
        """Start as many queued tasks as slots, conflicts and budget allow."""
        if self._stop_requested or self._abort is not None or not self.state.queue:
            return

        running = len(running_tasks(self.state))
        free = free_slot_count(self.state)
        if free == 0:
            return

        limit = self.budget.affordable_task_count(running + free) - running
        if limit <= 0:
            if not running:
                # Nothing running can lower the estimate, so the queue is stuck.
                b = self.budget
                self._abort_run(
                    BudgetExceeded(b.spent, b.ceiling, b.estimate_next_task_cost(), self.state.queue[0].id)
                )
            return

        for task in fill_slots(self.state, limit=limit):
            log.console.print(f"[cyan]●[/cyan] Started #{task.id} {escape(task.title)} [dim]({task.domain.value})[/dim]")
            fut = asyncio.get_running_loop().create_task(self._run_task(task), name=f"task-{task.id}")
            self._in_flight[task.id] = fut
            fut.add_done_callback(lambda f, tid=task.id: self._on_task_done(tid, f))

    def _on_task_done(self, task_id: int, fut: asyncio.Task[bool]) -> None:
        self._in_flight.pop(task_id, None)
        task = self.tasks[task_id]

        if fut.cancelled():
            success = False
            task.error = task.error or "cancelled"
        elif fut.exception() is not None:
            success = False
            task.error = task.error or str(fut.exception())
        else:
            success = fut.result()

        complete_task(self.state, task_id, success, task.error)
        task.current_action = ""
        if success:
            self._completed_ids.add(task_id)
            log.console.print(f"[green]✓[/green] #{task_id} {escape(task.title)}")
        else:
            log.console.print(f"[red]✗[/red] #{task_id} {escape(task.title)}: {escape(task.error)}")
            self._fail_dependents(task_id)
        save_task_report(self.cfg.artifacts_dir, task)

        self._admit_ready()
        self._schedule()
        self._check_done()

    def _fail_dependents(self, task_id: int) -> None:
        if self.graph is None:
            return
        for dep_id in self.graph.get_transitive_dependents(task_id):
            dep = self.tasks.get(dep_id)
            if dep is None or dep.status != TaskStatus.PENDING or dep_id in self._admitted:
                continue
            dep.status = TaskStatus.FAILED
            dep.error = f"dependency #{task_id} failed"
            dep.completed_at = datetime.now(timezone.utc)
            log.warn(f"Skipping #{dep_id}: dependency #{task_id} failed")
            save_task_report(self.cfg.artifacts_dir, dep)

    def _check_done(self) -> None:
        if self._done is None or self._in_flight:
            return
        if self._stop_requested or self._abort is not None or not has_work(self.state):
            self._done.set()

    def _abort_run(self, exc: BaseException) -> None:
        if self._abort is None:
            self._abort = exc
            log.error(f"Aborting run: {escape(str(exc))}")
            if self._in_flight:
                log.warn(f"Waiting for {len(self._in_flight)} running task(s) to finish…")

    # ── task execution ───────────────────────────────────────────

    async def _run_task(self, task: Task) -> bool:
        """Run one task end to end. Failures are recorded on *task*, never raised."""
        ws = None
        try:
            task.current_action = "creating worktree"
            ws = await create_workspace(
                f"issuefleet/issue-{task.id}",
                base_branch=self.cfg.base_branch,
                prefix=self.cfg.worktree_prefix,
                force=True,
                repo_dir=self.repo_dir,
            )
            task.worktree_path = str(ws.path)
            task.branch = ws.branch

            self.budget.can_afford(self.budget.estimate_next_task_cost(), task.id)

            model = select_model(task, self.cfg.agent_model)
            log_file = Path(self.cfg.artifacts_dir) / "logs" / f"issue-{task.id}.log" if self.cfg.artifacts_dir else None
            options = AgentOptions(
                model=model,
                budget_ceiling=self.cfg.agent_budget_usd,
                system_prompt=build_system_prompt(task),
                work_dir=ws.path.resolve(),
                timeout=self.cfg.timeout_seconds,
                max_turns=self.cfg.agent_max_turns or None,
                skip_permissions=self.cfg.skip_permissions,
                log_file=log_file,
            )
            prompt = build_task_prompt(task)

            task.current_action = f"running agent ({model})"
            response = await with_error_boundary(
                lambda: self.engine.invoke(prompt, options),
                f"agent({model})",
                self.policy,
                self.agent_breaker,
                self.observer,
            )
            task.cost_usd = response.cost_usd
            task.agent_session_id = response.session_id
            self.budget.record_cost(response.cost_usd)

            task.current_action = "committing"
            if not await commit_all(f"{task.title} (#{task.id})", ws.path):
                raise WorkspaceError("Agent finished without changing any files", str(ws.path))
            stats = await diff_stats(self.cfg.base_branch, ws.path)
            task.files_changed = stats.files_changed
            task.lines_added = stats.lines_added
            task.lines_removed = stats.lines_removed

            if self.cfg.create_pr:
                task.current_action = "opening pull request"
                task.pr_url = await with_error_boundary(
                    lambda: create_pull_request(
                        ws.branch,
                        self.cfg.base_branch,
                        task.title,
                        build_pr_body(task),
                        draft=self.cfg.draft_pr,
                        repo=self.cfg.repo,
                        cwd=ws.path,
                    ),
                    "github.create_pr",
                    self.policy,
                    self.github_breaker,
                    self.observer,
                )
            return True
        except BudgetExceeded as exc:
            task.error = str(exc)
            self._abort_run(exc)
            return False
        except Exception as exc:
            task.error = str(exc) or type(exc).__name__
            log.debug(f"#{task.id} failed: {escape(task.error)}")
            return False
        finally:
            if ws is not None:
                try:
                    await cleanup_workspace(ws.path, repo_dir=self.repo_dir)
                except WorkspaceError as exc:
                    log.warn(f"Could not remove worktree for #{task.id}: {escape(str(exc))}")

    # ── signals ──────────────────────────────────────────────────

    def _install_signal_handlers(self) -> None:
        """First signal stops admissions; a second one cancels running tasks."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_signal)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not supported on this platform or outside the main thread.
                pass

    def _restore_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                pass

    def _handle_signal(self) -> None:
        self._interrupt_count += 1
        self._stop_requested = True
        if self._interrupt_count == 1:
            log.warn(
                f"Stop requested: no new tasks will start, waiting for {len(self._in_flight)} running task(s). "
                "Press Ctrl-C again to cancel them."
            )
        else:
            log.warn("Cancelling running tasks…")
            for fut in list(self._in_flight.values()):
                fut.cancel()
        self._check_done()

    def stop(self) -> None:
        """Stop admitting new tasks; running ones finish normally."""
        self._stop_requested = True
        self._check_done()
