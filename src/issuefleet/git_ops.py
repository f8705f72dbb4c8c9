"""Git and GitHub operations: isolated worktrees, commits, pushes, PRs.

All commands run through asyncio subprocesses so that many task workspaces
can be provisioned while other agents keep running.
"""

from __future__ import annotations

import asyncio
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from issuefleet import log
from issuefleet.errors import ErrorType, GitHubError, WorkspaceError
from issuefleet.failure_patterns import match_error_text

WORKTREES_DIR = ".worktrees"


@dataclass
class Workspace:
    path: Path
    branch: str
    commit: str


@dataclass
class DiffStats:
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0


async def _run(cmd: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
    )
    out, err = await proc.communicate()
    return subprocess.CompletedProcess(
        cmd,
        proc.returncode if proc.returncode is not None else -1,
        out.decode("utf-8", errors="replace"),
        err.decode("utf-8", errors="replace"),
    )


async def _git(*args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    """Run a git command and capture its output."""
    return await _run(["git", *args], cwd=cwd)


def sanitize_branch(branch: str) -> str:
    return re.sub(r"[^a-zA-Z0-9-]", "-", branch)


async def current_branch(cwd: Path | None = None) -> str:
    r = await _git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
    return r.stdout.strip() if r.returncode == 0 else "main"


async def branch_exists(name: str, cwd: Path | None = None) -> bool:
    r = await _git("show-ref", "--verify", "--quiet", f"refs/heads/{name}", cwd=cwd)
    return r.returncode == 0


async def delete_branch(name: str, cwd: Path | None = None) -> None:
    await _git("branch", "-D", name, cwd=cwd)


async def worktree_prune(cwd: Path | None = None) -> None:
    await _git("worktree", "prune", cwd=cwd)


# ── Workspace provisioning ───────────────────────────────────────────

def workspace_path(branch: str, prefix: str = "issuefleet-", repo_dir: Path | None = None) -> Path:
    root = repo_dir or Path.cwd()
    return root / WORKTREES_DIR / f"{prefix}{sanitize_branch(branch)}"


async def create_workspace(
    branch: str,
    base_branch: str = "main",
    prefix: str = "issuefleet-",
    force: bool = False,
    repo_dir: Path | None = None,
) -> Workspace:
    """Create an isolated worktree on *branch*, branched from *base_branch*.

    With *force*, an existing worktree at the target path is removed and an
    existing branch is reset to *base_branch*. Any failure rolls back what
    was created and raises :class:`WorkspaceError`.
    """
    if not branch or not branch.strip():
        raise WorkspaceError("Branch name cannot be empty")
    if any(ch.isspace() for ch in branch):
        raise WorkspaceError(f"Branch name cannot contain whitespace: {branch!r}")

    repo_dir = repo_dir or Path.cwd()
    path = workspace_path(branch, prefix, repo_dir)

    if path.exists():
        if not force:
            raise WorkspaceError(f"Worktree already exists: {path}", str(path))
        log.warn(f"Worktree exists, removing: {path}")
        await cleanup_workspace(path, repo_dir=repo_dir)

    created_branch = False
    try:
        await worktree_prune(cwd=repo_dir)
        if await branch_exists(branch, cwd=repo_dir):
            if force:
                await delete_branch(branch, cwd=repo_dir)
        if not await branch_exists(branch, cwd=repo_dir):
            r = await _git("branch", branch, base_branch, cwd=repo_dir)
            if r.returncode != 0:
                raise WorkspaceError(
                    f"Failed to create branch {branch} from {base_branch}: {r.stderr.strip()}",
                    str(path),
                )
            created_branch = True

        path.parent.mkdir(parents=True, exist_ok=True)
        r = await _git("worktree", "add", str(path), branch, cwd=repo_dir)
        if r.returncode != 0:
            raise WorkspaceError(f"Failed to add worktree at {path}: {r.stderr.strip()}", str(path))

        r = await _git("rev-parse", "HEAD", cwd=path)
        if r.returncode != 0:
            raise WorkspaceError(f"Failed to read HEAD in {path}: {r.stderr.strip()}", str(path))
    except (WorkspaceError, OSError) as exc:
        log.error(f"Worktree creation failed, rolling back: {exc}")
        try:
            await cleanup_workspace(path, repo_dir=repo_dir)
        except WorkspaceError as cleanup_exc:
            log.warn(f"Rollback cleanup failed: {cleanup_exc}")
        if created_branch:
            await delete_branch(branch, cwd=repo_dir)
        if isinstance(exc, WorkspaceError):
            raise
        raise WorkspaceError(f"Failed to create worktree: {exc}", str(path)) from exc

    ws = Workspace(path=path, branch=branch, commit=r.stdout.strip())
    log.debug(f"Worktree created: {path} ({branch} @ {ws.commit[:8]})")
    return ws


async def cleanup_workspace(path: Path, repo_dir: Path | None = None) -> None:
    """Remove the worktree at *path*. A missing path is a no-op."""
    repo_dir = repo_dir or Path.cwd()
    if not path.exists():
        await worktree_prune(cwd=repo_dir)
        return

    r = await _git("worktree", "remove", "--force", str(path), cwd=repo_dir)
    if r.returncode != 0:
        log.debug(f"git worktree remove failed for {path}, deleting directory: {r.stderr.strip()}")
        shutil.rmtree(path, ignore_errors=True)
        await worktree_prune(cwd=repo_dir)
    if path.exists():
        raise WorkspaceError(f"Failed to remove worktree: {path}", str(path))
    log.debug(f"Worktree removed: {path}")


async def list_workspaces(prefix: str = "issuefleet-", repo_dir: Path | None = None) -> list[Path]:
    """Paths of worktrees created by :func:`create_workspace`."""
    r = await _git("worktree", "list", "--porcelain", cwd=repo_dir)
    if r.returncode != 0:
        return []
    paths: list[Path] = []
    for line in r.stdout.splitlines():
        if line.startswith("worktree "):
            p = Path(line[len("worktree "):])
            if p.parent.name == WORKTREES_DIR and p.name.startswith(prefix):
                paths.append(p)
    return paths


# ── Commits and diffs ────────────────────────────────────────────────

async def has_changes(cwd: Path) -> bool:
    r = await _git("status", "--porcelain", cwd=cwd)
    return bool(r.stdout.strip())


async def commit_all(message: str, cwd: Path) -> bool:
    """Stage and commit everything. Returns ``False`` when there was nothing to commit."""
    if not await has_changes(cwd):
        return False
    await _git("add", "-A", cwd=cwd)
    r = await _git("commit", "-m", message, cwd=cwd)
    if r.returncode != 0:
        raise WorkspaceError(f"git commit failed: {r.stderr.strip() or r.stdout.strip()}", str(cwd))
    return True


async def diff_stats(base: str, cwd: Path) -> DiffStats:
    r = await _git("diff", "--numstat", f"{base}..HEAD", cwd=cwd)
    stats = DiffStats()
    if r.returncode != 0:
        return stats
    for line in r.stdout.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        stats.files_changed += 1
        # Binary files report "-" for both counts.
        if parts[0].isdigit():
            stats.lines_added += int(parts[0])
        if parts[1].isdigit():
            stats.lines_removed += int(parts[1])
    return stats


# ── GitHub (gh CLI) ──────────────────────────────────────────────────

_HTTP_STATUS_RE = re.compile(r"HTTP (\d{3})")


def gh_error(action: str, r: subprocess.CompletedProcess[str]) -> GitHubError:
    """Build a tagged :class:`GitHubError` from a failed ``gh`` call."""
    detail = (r.stderr or r.stdout).strip()
    m = _HTTP_STATUS_RE.search(detail)
    status = int(m.group(1)) if m else None
    match status:
        case 429:
            error_type = ErrorType.RATE_LIMIT
        case 401 | 404 | 422:
            error_type = ErrorType.VALIDATION
        case 403:
            # GitHub reports secondary rate limits as 403.
            error_type = ErrorType.RATE_LIMIT if "rate limit" in detail.lower() else ErrorType.QUOTA_EXCEEDED
        case 504:
            error_type = ErrorType.TIMEOUT
        case int() if status >= 500:
            error_type = ErrorType.NETWORK
        case _:
            error_type = match_error_text(detail)
    return GitHubError(f"{action} failed: {detail or f'exit code {r.returncode}'}", status, error_type)


async def run_gh(*args: str, cwd: Path | None = None, action: str = "gh") -> str:
    """Run ``gh`` and return stdout, raising :class:`GitHubError` on failure."""
    if not shutil.which("gh"):
        raise GitHubError(
            "GitHub CLI (gh) not found. Install from https://cli.github.com/",
            error_type=ErrorType.VALIDATION,
        )
    r = await _run(["gh", *args], cwd=cwd)
    if r.returncode != 0:
        raise gh_error(action, r)
    return r.stdout


async def push_branch(branch: str, cwd: Path) -> None:
    r = await _git("push", "-u", "origin", branch, cwd=cwd)
    if r.returncode != 0:
        raise gh_error(f"git push {branch}", r)


async def create_pull_request(
    branch: str,
    base: str,
    title: str,
    body: str = "Automated PR created by issuefleet",
    draft: bool = False,
    repo: str = "",
    cwd: Path | None = None,
) -> str:
    """Push *branch* and open a PR with ``gh``. Returns the PR URL."""
    if cwd is not None:
        await push_branch(branch, cwd)
    args = ["pr", "create", "--base", base, "--head", branch, "--title", title, "--body", body]
    if repo:
        args += ["--repo", repo]
    if draft:
        args.append("--draft")
    url = (await run_gh(*args, cwd=cwd, action=f"gh pr create ({branch})")).strip()
    log.success(f"PR created: {url}")
    return url
