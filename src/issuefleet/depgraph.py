"""Dependency graph for ordering planner-decomposed tasks."""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from issuefleet.errors import DependencyCycleError
from issuefleet.tasks.model import Task

_MERMAID_HTML = """<!DOCTYPE html>
<html>
<head>
  <script src="https://cdn.jsdelivr.net/npm/mermaid/dist/mermaid.min.js"></script>
  <script>mermaid.initialize({{ startOnLoad: true }});</script>
</head>
<body>
  <div class="mermaid">
{diagram}
  </div>
</body>
</html>
"""


@dataclass
class DependencyNode:
    task_id: int
    depends_on: list[int] = field(default_factory=list)
    blocks: list[int] = field(default_factory=list)


class DependencyGraph:
    """Directed graph of ``task -> tasks it depends on``.

    Usage::

        graph = DependencyGraph()
        graph.add_task(t1)
        graph.add_task(t2, depends_on=[t1.id])
        graph.has_cycles()               # False
        graph.get_ready_tasks({t1.id})   # [t2.id]
    """

    def __init__(self) -> None:
        self._nodes: dict[int, DependencyNode] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._nodes

    @property
    def task_ids(self) -> list[int]:
        return list(self._nodes)

    # ── construction ─────────────────────────────────────────────

    def add_task(self, task: Task, depends_on: Iterable[int] | None = None) -> None:
        """Insert *task*; reverse edges are added on dependencies already present."""
        deps = list(task.depends_on if depends_on is None else depends_on)
        self._nodes[task.id] = DependencyNode(task_id=task.id, depends_on=deps)
        for dep in deps:
            node = self._nodes.get(dep)
            if node is not None:
                node.blocks.append(task.id)

    # ── queries ──────────────────────────────────────────────────

    def get_ready_tasks(self, completed: Collection[int]) -> list[int]:
        """Ids not yet completed whose every dependency is in *completed*."""
        return [
            tid
            for tid, node in self._nodes.items()
            if tid not in completed and all(dep in completed for dep in node.depends_on)
        ]

    def get_blocked_tasks(self) -> dict[int, list[int]]:
        return {tid: list(node.depends_on) for tid, node in self._nodes.items() if node.depends_on}

    def get_blocked_by(self, task_id: int) -> list[int]:
        """Ids of tasks that wait on *task_id*."""
        node = self._nodes.get(task_id)
        return list(node.blocks) if node else []

    def get_dependencies(self, task_id: int) -> list[int]:
        node = self._nodes.get(task_id)
        return list(node.depends_on) if node else []

    def get_transitive_dependents(self, task_id: int) -> list[int]:
        """All tasks that directly or indirectly wait on *task_id*."""
        seen: list[int] = []
        stack = list(reversed(self.get_blocked_by(task_id)))
        while stack:
            tid = stack.pop()
            if tid in seen:
                continue
            seen.append(tid)
            stack.extend(reversed(self.get_blocked_by(tid)))
        return seen

    def can_start(self, task_id: int, completed: Collection[int]) -> bool:
        node = self._nodes.get(task_id)
        if node is None:
            return False
        return all(dep in completed for dep in node.depends_on)

    # ── ordering ─────────────────────────────────────────────────

    def has_cycles(self) -> bool:
        """Return ``True`` if any dependency chain loops back on itself."""
        visited: set[int] = set()
        on_stack: set[int] = set()

        def visit(tid: int) -> bool:
            visited.add(tid)
            on_stack.add(tid)
            for dep in self.get_dependencies(tid):
                if dep not in visited:
                    if visit(dep):
                        return True
                elif dep in on_stack:
                    return True
            on_stack.discard(tid)
            return False

        return any(tid not in visited and visit(tid) for tid in list(self._nodes))

    def get_execution_order(self) -> list[int]:
        """Topological order with every dependency before its dependents.

        Raises :class:`DependencyCycleError` when the graph is cyclic.
        """
        if self.has_cycles():
            raise DependencyCycleError("Cannot create execution order: dependency graph has cycles")

        visited: set[int] = set()
        order: list[int] = []

        def visit(tid: int) -> None:
            if tid in visited or tid not in self._nodes:
                return
            visited.add(tid)
            for dep in self.get_dependencies(tid):
                visit(dep)
            order.append(tid)

        for tid in self._nodes:
            visit(tid)
        return order

    # ── diagnostics ──────────────────────────────────────────────

    def visualize(self) -> str:
        lines = ["Dependency graph:", "─" * 60]
        for tid, node in self._nodes.items():
            deps = f" <- depends on [{', '.join(map(str, node.depends_on))}]" if node.depends_on else ""
            blocks = f" -> blocks [{', '.join(map(str, node.blocks))}]" if node.blocks else ""
            lines.append(f"  #{tid}{deps}{blocks}")
        lines.append("─" * 60)
        return "\n".join(lines)

    def to_mermaid(self) -> str:
        lines = ["graph TD"]
        for tid, node in self._nodes.items():
            lines.append(f"  T{tid}[Task #{tid}]")
            for dep in node.depends_on:
                lines.append(f"  T{dep} --> T{tid}")
        return "\n".join(lines) + "\n"

    def save_mermaid_diagram(self, path: Path) -> Path:
        """Write an HTML page rendering the graph with Mermaid."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_MERMAID_HTML.format(diagram=self.to_mermaid()), encoding="utf-8")
        return path
