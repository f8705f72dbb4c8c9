"""Detect tasks that are likely to edit the same files."""

from __future__ import annotations

import re
from collections.abc import Iterable

from cachetools import TTLCache

from issuefleet import log
from issuefleet.tasks.model import Task

_EXTENSIONS = r"(?:tsx|jsx|json|yaml|scss|html|toml|ts|js|md|yml|css|py)"
_PATH_CHARS = r"[a-zA-Z0-9_\-/.]+"

PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    # bare path under a recognizable top-level directory
    re.compile(
        rf"(?:src|lib|core|tests?|components?|pages?|app|utils?)/{_PATH_CHARS}\.{_EXTENSIONS}\b",
        re.IGNORECASE,
    ),
    re.compile(rf"`({_PATH_CHARS}\.{_EXTENSIONS})\b`", re.IGNORECASE),
    re.compile(rf'"({_PATH_CHARS}\.{_EXTENSIONS})\b"', re.IGNORECASE),
)

# The same task text is re-scanned on every scheduling pass.
_extraction_cache: TTLCache[str, tuple[str, ...]] = TTLCache(maxsize=1000, ttl=600)


def extract_file_paths(text: str) -> list[str]:
    """Return the distinct file paths mentioned in *text*, in first-seen order."""
    cached = _extraction_cache.get(text)
    if cached is not None:
        return list(cached)

    found: dict[str, None] = {}
    for pattern in PATH_PATTERNS:
        for m in pattern.finditer(text):
            path = (m.group(1) if m.groups() else m.group(0)).replace("`", "").replace('"', "").strip()
            if path:
                found.setdefault(path, None)

    result = tuple(found)
    _extraction_cache[text] = result
    return list(result)


def clear_extraction_cache() -> None:
    _extraction_cache.clear()


def _task_text(task: Task) -> str:
    return f"{task.title} {task.body}"


def file_owners(tasks: Iterable[Task]) -> dict[str, list[int]]:
    """Map each referenced file to the ids of the tasks that mention it."""
    owners: dict[str, list[int]] = {}
    for task in tasks:
        for path in extract_file_paths(_task_text(task)):
            ids = owners.setdefault(path, [])
            if task.id not in ids:
                ids.append(task.id)
    return owners


def detect_conflicts(tasks: Iterable[Task]) -> dict[int, list[int]]:
    """Return ``{task_id: [conflicting ids]}`` for tasks sharing any file.

    The relation is symmetric. Tasks that share nothing are absent.
    """
    conflicts: dict[int, list[int]] = {}
    for ids in file_owners(tasks).values():
        if len(ids) < 2:
            continue
        for tid in ids:
            peers = conflicts.setdefault(tid, [])
            for other in ids:
                if other != tid and other not in peers:
                    peers.append(other)

    if conflicts:
        pairs = ", ".join(f"#{tid} <-> {sorted(peers)}" for tid, peers in sorted(conflicts.items()))
        log.debug(f"File conflicts detected: {pairs}")
    return conflicts


def has_conflict(a: Task, b: Task) -> bool:
    """Return ``True`` when *a* and *b* mention at least one common file."""
    return bool(set(extract_file_paths(_task_text(a))) & set(extract_file_paths(_task_text(b))))
