"""Unit tests for issuefleet.git_ops against real temporary git repos."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from issuefleet import git_ops
from issuefleet.errors import ErrorType, GitHubError, WorkspaceError


# ── helpers ──────────────────────────────────────────────────────────


def _git(repo: Path, *args: str) -> str:
    return subprocess.run(["git", *args], cwd=repo, capture_output=True, text=True, check=True).stdout


def _failed(stderr: str, code: int = 1) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(["gh"], code, "", stderr)


# ── TestWorkspaces ───────────────────────────────────────────────────


class TestWorkspaces:
    @pytest.mark.asyncio
    async def test_create_and_cleanup(self, git_repo: Path) -> None:
        ws = await git_ops.create_workspace("issuefleet/issue-1", repo_dir=git_repo)

        assert ws.path == git_repo / ".worktrees" / "issuefleet-issuefleet-issue-1"
        assert ws.path.is_dir()
        assert (ws.path / "README.md").is_file()
        assert ws.branch == "issuefleet/issue-1"
        assert ws.commit == _git(git_repo, "rev-parse", "main").strip()
        assert await git_ops.branch_exists("issuefleet/issue-1", cwd=git_repo)
        listed = await git_ops.list_workspaces(repo_dir=git_repo)
        assert [p.resolve() for p in listed] == [ws.path.resolve()]

        await git_ops.cleanup_workspace(ws.path, repo_dir=git_repo)
        assert not ws.path.exists()
        assert await git_ops.list_workspaces(repo_dir=git_repo) == []

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self, git_repo: Path) -> None:
        ws = await git_ops.create_workspace("twice", repo_dir=git_repo)
        await git_ops.cleanup_workspace(ws.path, repo_dir=git_repo)
        await git_ops.cleanup_workspace(ws.path, repo_dir=git_repo)
        assert not ws.path.exists()

    @pytest.mark.asyncio
    async def test_existing_path_without_force(self, git_repo: Path) -> None:
        await git_ops.create_workspace("dup", repo_dir=git_repo)
        with pytest.raises(WorkspaceError, match="already exists"):
            await git_ops.create_workspace("dup", repo_dir=git_repo)

    @pytest.mark.asyncio
    async def test_force_recreates_from_base(self, git_repo: Path) -> None:
        ws = await git_ops.create_workspace("again", repo_dir=git_repo)
        (ws.path / "stale.txt").write_text("old run", encoding="utf-8")
        await git_ops.commit_all("stale work", ws.path)

        ws2 = await git_ops.create_workspace("again", force=True, repo_dir=git_repo)
        assert ws2.path == ws.path
        assert not (ws2.path / "stale.txt").exists()
        assert ws2.commit == _git(git_repo, "rev-parse", "main").strip()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("branch", ["", "   ", "has space"])
    async def test_bad_branch_names(self, git_repo: Path, branch: str) -> None:
        with pytest.raises(WorkspaceError):
            await git_ops.create_workspace(branch, repo_dir=git_repo)

    @pytest.mark.asyncio
    async def test_unknown_base_rolls_back(self, git_repo: Path) -> None:
        with pytest.raises(WorkspaceError, match="Failed to create branch"):
            await git_ops.create_workspace("orphan", base_branch="no-such-base", repo_dir=git_repo)
        assert not git_ops.workspace_path("orphan", repo_dir=git_repo).exists()
        assert not await git_ops.branch_exists("orphan", cwd=git_repo)

    def test_sanitize_branch(self) -> None:
        assert git_ops.sanitize_branch("feat/Issue #12") == "feat-Issue--12"


# ── TestCommits ──────────────────────────────────────────────────────


class TestCommits:
    @pytest.mark.asyncio
    async def test_commit_all_and_diff_stats(self, git_repo: Path) -> None:
        ws = await git_ops.create_workspace("work", repo_dir=git_repo)
        assert not await git_ops.has_changes(ws.path)
        assert not await git_ops.commit_all("nothing", ws.path)

        (ws.path / "README.md").write_text("# Test\nmore\nlines\n", encoding="utf-8")
        (ws.path / "new.py").write_text("x = 1\n", encoding="utf-8")
        assert await git_ops.has_changes(ws.path)
        assert await git_ops.commit_all("Add things", ws.path)
        assert not await git_ops.has_changes(ws.path)

        stats = await git_ops.diff_stats("main", ws.path)
        assert stats.files_changed == 2
        assert stats.lines_added == 3
        assert stats.lines_removed == 0
        assert _git(ws.path, "log", "-1", "--format=%s").strip() == "Add things"

    @pytest.mark.asyncio
    async def test_diff_stats_bad_base(self, git_repo: Path) -> None:
        stats = await git_ops.diff_stats("does-not-exist", git_repo)
        assert stats.files_changed == 0

    @pytest.mark.asyncio
    async def test_current_branch(self, git_repo: Path) -> None:
        assert await git_ops.current_branch(cwd=git_repo) == "main"


# ── TestGitHub ───────────────────────────────────────────────────────


class TestGhErrorMapping:
    @pytest.mark.parametrize(
        ("stderr", "status", "expected"),
        [
            ("HTTP 429: API rate limit", 429, ErrorType.RATE_LIMIT),
            ("HTTP 401: Bad credentials", 401, ErrorType.VALIDATION),
            ("HTTP 404: Not Found", 404, ErrorType.VALIDATION),
            ("HTTP 422: Validation Failed", 422, ErrorType.VALIDATION),
            ("HTTP 403: You have exceeded a secondary rate limit", 403, ErrorType.RATE_LIMIT),
            ("HTTP 403: Resource not accessible", 403, ErrorType.QUOTA_EXCEEDED),
            ("HTTP 504: Gateway Timeout", 504, ErrorType.TIMEOUT),
            ("HTTP 502: Bad Gateway", 502, ErrorType.NETWORK),
            ("error connecting to api.github.com: connection refused", None, ErrorType.NETWORK),
            ("something else", None, ErrorType.UNKNOWN),
        ],
    )
    def test_mapping(self, stderr, status, expected) -> None:
        err = git_ops.gh_error("gh issue list", _failed(stderr))
        assert err.status_code == status
        assert err.error_type == expected
        assert "gh issue list failed" in str(err)


class TestRunGh:
    @pytest.mark.asyncio
    async def test_missing_gh(self) -> None:
        with patch("issuefleet.git_ops.shutil.which", return_value=None):
            with pytest.raises(GitHubError) as exc_info:
                await git_ops.run_gh("issue", "list")
        assert exc_info.value.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_failure_raises_tagged_error(self) -> None:
        with (
            patch("issuefleet.git_ops.shutil.which", return_value="/usr/bin/gh"),
            patch("issuefleet.git_ops._run", AsyncMock(return_value=_failed("HTTP 429: slow down"))),
        ):
            with pytest.raises(GitHubError) as exc_info:
                await git_ops.run_gh("issue", "list", action="list issues")
        assert exc_info.value.error_type == ErrorType.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_create_pull_request(self) -> None:
        ok = subprocess.CompletedProcess(["gh"], 0, "https://github.com/acme/app/pull/7\n", "")
        run = AsyncMock(return_value=ok)
        with (
            patch("issuefleet.git_ops.shutil.which", return_value="/usr/bin/gh"),
            patch("issuefleet.git_ops._run", run),
        ):
            url = await git_ops.create_pull_request(
                "issuefleet/issue-7", "main", "Fix it", "Closes #7", draft=True, repo="acme/app"
            )
        assert url == "https://github.com/acme/app/pull/7"
        cmd = run.call_args.args[0]
        assert cmd[:3] == ["gh", "pr", "create"]
        assert "--draft" in cmd
        assert cmd[cmd.index("--repo") + 1] == "acme/app"
        assert cmd[cmd.index("--head") + 1] == "issuefleet/issue-7"
