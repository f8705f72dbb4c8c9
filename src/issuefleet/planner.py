"""Decompose a natural-language directive into dependent tasks."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from issuefleet import log
from issuefleet.depgraph import DependencyGraph
from issuefleet.domain import classify_task
from issuefleet.engines.base import AgentOptions, EngineBase
from issuefleet.errors import ValidationError
from issuefleet.prompts import build_planner_prompt
from issuefleet.tasks.model import Complexity, Task

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\[.*?\])\s*```", re.DOTALL)

MAX_PLANNED_TASKS = 20


@dataclass
class PlannedTask:
    title: str
    body: str = ""
    labels: list[str] = field(default_factory=list)
    depends_on: list[int] = field(default_factory=list)  # 1-based positions
    complexity: Complexity = Complexity.MEDIUM


@dataclass
class PlannerResult:
    tasks: list[PlannedTask]
    cost_usd: float = 0.0
    duration_ms: int = 0


def _extract_json_array(content: str) -> list:
    m = _FENCED_JSON_RE.search(content)
    candidate = m.group(1) if m else None
    if candidate is None:
        start, end = content.find("["), content.rfind("]")
        if start == -1 or end <= start:
            raise ValidationError(
                "Planner output contains no JSON array",
                "Re-run the planner or simplify the directive",
            )
        candidate = content[start : end + 1]
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Planner output is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ValidationError("Planner output must be a JSON array")
    return data


def parse_plan(content: str) -> list[PlannedTask]:
    """Parse and validate the planner agent's JSON answer."""
    items = _extract_json_array(content)
    if not items:
        raise ValidationError("Planner returned no tasks", "Make the directive more specific")
    if len(items) > MAX_PLANNED_TASKS:
        raise ValidationError(f"Planner returned {len(items)} tasks, at most {MAX_PLANNED_TASKS} are allowed")

    planned: list[PlannedTask] = []
    for pos, item in enumerate(items, 1):
        if not isinstance(item, dict) or not str(item.get("title", "")).strip():
            raise ValidationError(f"Planned task {pos} has no title")
        meta = item.get("metadata") or {}
        deps_raw = meta.get("depends_on", item.get("depends_on")) or []
        try:
            deps = [int(d) for d in deps_raw]
        except (TypeError, ValueError):
            raise ValidationError(f"Planned task {pos} has non-numeric dependencies: {deps_raw!r}") from None
        for dep in deps:
            if not 1 <= dep <= len(items):
                raise ValidationError(f"Planned task {pos} depends on unknown position {dep}")
        try:
            complexity = Complexity(str(meta.get("complexity", "medium")).lower())
        except ValueError:
            complexity = Complexity.MEDIUM
        planned.append(
            PlannedTask(
                title=str(item["title"]).strip(),
                body=str(item.get("body", "")),
                labels=[str(lbl) for lbl in item.get("labels") or []],
                depends_on=deps,
                complexity=complexity,
            )
        )
    return planned


async def decompose(directive: str, repo: str, engine: EngineBase, options: AgentOptions) -> PlannerResult:
    """Ask the agent to split *directive* into tasks."""
    if not directive.strip():
        raise ValidationError("Directive is empty", "Describe what should be built")
    log.info(f"Planning directive with {options.model}…")
    response = await engine.invoke(build_planner_prompt(directive, repo), options)
    tasks = parse_plan(response.content)
    log.success(f"Planner produced {len(tasks)} task(s) (${response.cost_usd:.2f})")
    return PlannerResult(tasks=tasks, cost_usd=response.cost_usd, duration_ms=response.duration_ms)


def build_tasks(planned: list[PlannedTask], ids: list[int]) -> tuple[list[Task], DependencyGraph]:
    """Map planned positions onto real task *ids* and build the graph.

    ``ids[i]`` is the id assigned to ``planned[i]``.
    """
    if len(ids) != len(planned):
        raise ValueError(f"Expected {len(planned)} ids, got {len(ids)}")

    graph = DependencyGraph()
    tasks: list[Task] = []
    for p, tid in zip(planned, ids):
        result = classify_task(p.title, p.body, p.labels)
        task = Task(
            id=tid,
            title=p.title,
            body=p.body,
            labels=list(p.labels),
            domain=result.domain,
            depends_on=[ids[d - 1] for d in p.depends_on],
            complexity=p.complexity,
        )
        tasks.append(task)
    # Insert dependencies first so reverse edges are recorded.
    by_id = {t.id: t for t in tasks}
    for tid in _insertion_order(tasks):
        graph.add_task(by_id[tid])
    return tasks, graph


def _insertion_order(tasks: list[Task]) -> list[int]:
    """Dependencies before dependents where possible; cycles keep list order."""
    ids = [t.id for t in tasks]
    deps = {t.id: t.depends_on for t in tasks}
    order: list[int] = []
    visiting: set[int] = set()

    def visit(tid: int) -> None:
        if tid in order or tid in visiting:
            return
        visiting.add(tid)
        for dep in deps.get(tid, []):
            if dep in deps:
                visit(dep)
        visiting.discard(tid)
        order.append(tid)

    for tid in ids:
        visit(tid)
    return order
