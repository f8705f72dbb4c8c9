"""Sliding-window scheduler with domain and file-conflict admission.

The state lives in an explicit :class:`SchedulerState` owned by the caller;
the module functions mutate it synchronously and never suspend, so callers
on a single event loop need no locking.

Usage::

    state = create_scheduler(3)
    enqueue_tasks(state, tasks)
    started = fill_slots(state)           # launch these
    complete_task(state, tid, success)    # then call fill_slots again
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from rich.markup import escape

from issuefleet import log
from issuefleet.conflicts import detect_conflicts
from issuefleet.domain import domains_compatible
from issuefleet.tasks.model import Domain, Task, TaskStatus


@dataclass
class Slot:
    index: int
    task: Task | None = None
    started_at: datetime | None = None


@dataclass
class SchedulerState:
    max_slots: int
    slots: list[Slot] = field(default_factory=list)
    queue: list[Task] = field(default_factory=list)
    scheduled: set[int] = field(default_factory=set)
    completed: int = 0
    failed: int = 0
    # Rebuilt by every fill_slots pass; the single source of block reasons.
    block_reasons: dict[int, str] = field(default_factory=dict)


@dataclass
class SchedulerSummary:
    total: int
    completed: int
    failed: int
    running: int
    queued: int
    success_rate: float


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_scheduler(max_slots: int) -> SchedulerState:
    if max_slots < 1:
        raise ValueError(f"max_slots must be at least 1, got {max_slots}")
    return SchedulerState(max_slots=max_slots, slots=[Slot(index=i) for i in range(max_slots)])


# ── queue ────────────────────────────────────────────────────────────

def enqueue_task(state: SchedulerState, task: Task) -> bool:
    """Append *task* to the queue. Returns ``False`` for a duplicate id."""
    if task.id in state.scheduled or any(q.id == task.id for q in state.queue):
        log.warn(f"Task #{task.id} already scheduled, ignoring")
        return False
    task.status = TaskStatus.PENDING
    state.queue.append(task)
    log.debug(f"Task #{task.id}: queued ({task.domain.value})")
    return True


def enqueue_tasks(state: SchedulerState, tasks: list[Task]) -> int:
    return sum(1 for t in tasks if enqueue_task(state, t))


# ── state queries ────────────────────────────────────────────────────

def running_tasks(state: SchedulerState) -> list[Task]:
    return [s.task for s in state.slots if s.task is not None]


def free_slot_count(state: SchedulerState) -> int:
    return sum(1 for s in state.slots if s.task is None)


def has_work(state: SchedulerState) -> bool:
    return bool(state.queue) or any(s.task is not None for s in state.slots)


def is_complete(state: SchedulerState) -> bool:
    return not has_work(state)


def get_block_reasons(state: SchedulerState) -> dict[int, str]:
    return dict(state.block_reasons)


def get_summary(state: SchedulerState) -> SchedulerSummary:
    finished = state.completed + state.failed
    return SchedulerSummary(
        total=len(state.scheduled) + len(state.queue),
        completed=state.completed,
        failed=state.failed,
        running=len(running_tasks(state)),
        queued=len(state.queue),
        success_rate=(state.completed / finished * 100) if finished else 0.0,
    )


def get_scheduler_status(state: SchedulerState) -> dict:
    summary = get_summary(state)
    return {
        "running": summary.running,
        "queued": summary.queued,
        "completed": summary.completed,
        "failed": summary.failed,
        "total": summary.total,
        "slots": [
            {
                "index": s.index,
                "task": None
                if s.task is None
                else {
                    "id": s.task.id,
                    "title": s.task.title,
                    "domain": s.task.domain.value,
                    "startedAt": s.started_at.isoformat() if s.started_at else None,
                },
            }
            for s in state.slots
        ],
    }


# ── admission ────────────────────────────────────────────────────────

def _block_reason(
    task: Task,
    running_domains: list[Domain],
    running_ids: set[int],
    conflicts: dict[int, list[int]],
) -> str:
    """Why *task* cannot start next to the running set, or ``""``."""
    if any(not domains_compatible(task.domain, d) for d in running_domains):
        shown = ", ".join(dict.fromkeys(d.value for d in running_domains))
        return f"Domain conflict: {task.domain.value} cannot run with currently executing domains [{shown}]"
    blockers = [tid for tid in conflicts.get(task.id, []) if tid in running_ids]
    if blockers:
        return f"File conflict: shares files with tasks [{', '.join(f'#{b}' for b in blockers)}]"
    return ""


def fill_slots(state: SchedulerState, limit: int | None = None) -> list[Task]:
    """Assign queued tasks to free slots and return the newly started ones.

    Each free slot takes the first queued task that is domain-compatible
    with, and shares no file with, every running task. Skipped tasks keep
    their queue position and get a block reason. *limit* caps how many
    tasks this pass may start.
    """
    state.block_reasons.clear()

    running = running_tasks(state)
    conflicts = detect_conflicts(running + state.queue)
    running_domains = [t.domain for t in running]
    running_ids = {t.id for t in running}

    started: list[Task] = []
    while limit is None or len(started) < limit:
        slot = next((s for s in state.slots if s.task is None), None)
        if slot is None:
            break

        pick: Task | None = None
        for task in state.queue:
            reason = _block_reason(task, running_domains, running_ids, conflicts)
            if reason:
                state.block_reasons[task.id] = reason
                continue
            pick = task
            break
        if pick is None:
            break

        state.queue.remove(pick)
        state.block_reasons.pop(pick.id, None)
        now = _now()
        slot.task = pick
        slot.started_at = now
        pick.status = TaskStatus.RUNNING
        pick.started_at = now
        state.scheduled.add(pick.id)
        running_domains.append(pick.domain)
        running_ids.add(pick.id)
        started.append(pick)
        log.debug(f"Task #{pick.id}: pending -> running (slot {slot.index}, {pick.domain.value})")

    for tid, reason in state.block_reasons.items():
        log.debug(f"Task #{tid} blocked: {escape(reason)}")
    return started


def complete_task(state: SchedulerState, task_id: int, success: bool, error: str = "") -> bool:
    """Free the slot holding *task_id* and record its terminal status.

    Does not refill; the caller invokes :func:`fill_slots` again.
    """
    slot = next((s for s in state.slots if s.task is not None and s.task.id == task_id), None)
    if slot is None or slot.task is None:
        log.warn(f"Task #{task_id} is not running, cannot complete it")
        return False

    task = slot.task
    task.completed_at = _now()
    if success:
        task.status = TaskStatus.COMPLETED
        state.completed += 1
    else:
        task.status = TaskStatus.FAILED
        if error:
            task.error = error
        state.failed += 1
    slot.task = None
    slot.started_at = None
    log.debug(f"Task #{task_id}: running -> {task.status.value} (slot {slot.index} free)")
    return True
