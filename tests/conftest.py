"""Shared fixtures for issuefleet tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Git-backed tests get a fresh repository on branch ``main`` from ``git_repo``.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from issuefleet.conflicts import clear_extraction_cache
from issuefleet.tasks.model import Complexity, Domain, Task


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for expensive end-to-end tests."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _fresh_extraction_cache():
    """Path extraction is memoised module-wide; start every test clean."""
    clear_extraction_cache()
    yield
    clear_extraction_cache()


@pytest.fixture(autouse=True)
def _no_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ISSUEFLEET_DISABLE_METRICS", raising=False)
    monkeypatch.delenv("ISSUEFLEET_MAX_BUDGET_USD", raising=False)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a minimal git repo on branch ``main`` for testing."""
    repo = tmp_path / "repo"
    repo.mkdir()
    subprocess.run(["git", "init"], cwd=repo, capture_output=True, check=True)
    subprocess.run(["git", "config", "user.name", "Test"], cwd=repo, capture_output=True)
    subprocess.run(["git", "config", "user.email", "test@test"], cwd=repo, capture_output=True)
    (repo / "README.md").write_text("# Test\n", encoding="utf-8")
    subprocess.run(["git", "add", "README.md"], cwd=repo, capture_output=True)
    subprocess.run(["git", "commit", "-m", "Initial"], cwd=repo, capture_output=True, check=True)
    subprocess.run(["git", "branch", "-M", "main"], cwd=repo, capture_output=True, check=True)
    return repo


def _make_task(
    id: int,
    title: str = "",
    body: str = "",
    domain: Domain = Domain.UNKNOWN,
    labels: list[str] | None = None,
    depends_on: list[int] | None = None,
    complexity: Complexity = Complexity.MEDIUM,
) -> Task:
    return Task(
        id=id,
        title=title or f"Task {id}",
        body=body,
        labels=labels or [],
        domain=domain,
        depends_on=depends_on or [],
        complexity=complexity,
    )


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task
