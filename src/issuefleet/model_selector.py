"""Pick a cheaper or stronger model per task when the default is sonnet."""

from __future__ import annotations

from issuefleet.tasks.model import Complexity, Task

SIMPLE_KEYWORDS: tuple[str, ...] = (
    "docs",
    "documentation",
    "readme",
    "comment",
    "typo",
    "simple",
    "rename",
    "improve wording",
)

COMPLEX_KEYWORDS: tuple[str, ...] = (
    "architecture",
    "refactor",
    "redesign",
    "complex",
    "migrate",
    "rewrite",
    "performance",
    "optimize",
    "scale",
)


def select_model(task: Task, configured: str = "sonnet") -> str:
    """Return the model to run *task* with.

    An explicit non-sonnet choice always wins. Otherwise planner complexity
    decides, then keywords in the title and body, then labels.
    """
    if configured != "sonnet":
        return configured

    if task.complexity == Complexity.SIMPLE:
        return "haiku"
    if task.complexity == Complexity.COMPLEX:
        return "opus"

    text = f"{task.title} {task.body}".lower()
    if any(kw in text for kw in SIMPLE_KEYWORDS):
        return "haiku"
    if any(kw in text for kw in COMPLEX_KEYWORDS):
        return "opus"

    labels = {label.lower() for label in task.labels}
    if labels & {"complex", "architecture"}:
        return "opus"
    if labels & {"simple", "docs"}:
        return "haiku"
    return "sonnet"
