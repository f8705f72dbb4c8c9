"""issuefleet CLI.

Installed as ``issuefleet`` console_script via pipx / pip.
"""

from __future__ import annotations

import asyncio
import shutil
import sys
from pathlib import Path

import click
from rich.markup import escape

from issuefleet import __version__
from issuefleet.config import MODELS, Config
from issuefleet.errors import IssueFleetError

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to issuefleet.json (default: discovered in cwd or repo root)",
)
@click.option("--repo", default=None, help="GitHub repository as owner/name")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="issuefleet")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, repo: str | None, verbose: bool) -> None:
    """issuefleet: run coding agents on GitHub issues in parallel.

    \b
    EXAMPLES:
      issuefleet run ready                     # Every open issue labelled "ready"
      issuefleet run ready --max-parallel 5    # Five agents at once
      issuefleet plan "Add OAuth login"        # Decompose, open issues, run
      issuefleet plan --dry-run "Add OAuth"    # Show the plan only
    """
    from issuefleet import log

    log.set_verbose(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["repo"] = repo
    ctx.obj["verbose"] = verbose


# ── Subcommand: run ──────────────────────────────────────────────


@main.command()
@click.argument("label")
@click.option("--max-parallel", type=int, default=None, help="Max concurrent agents (1-10)")
@click.option("--budget", type=float, default=None, help="Total budget ceiling in USD")
@click.option("--model", type=click.Choice(MODELS), default=None, help="Agent model")
@click.option("--base-branch", default=None, help="Branch to fork task branches from")
@click.option("--no-pr", is_flag=True, help="Commit on task branches but open no PRs")
@click.option("--draft", is_flag=True, help="Open PRs as drafts")
@click.option("--dry-run", is_flag=True, help="Show the schedule without executing")
@click.pass_context
def run(
    ctx: click.Context,
    label: str,
    max_parallel: int | None,
    budget: float | None,
    model: str | None,
    base_branch: str | None,
    no_pr: bool,
    draft: bool,
    dry_run: bool,
) -> None:
    """Run an agent on every open issue carrying LABEL."""
    cfg = _load(
        ctx,
        max_parallel=max_parallel,
        max_total_budget_usd=budget,
        agent_model=model,
        base_branch=base_branch,
        create_pr=False if no_pr else None,
        draft_pr=True if draft else None,
        dry_run=dry_run or None,
    )
    _run_pipeline(cfg, lambda runner: runner.run_label(label))


# ── Subcommand: plan ─────────────────────────────────────────────


@main.command()
@click.argument("directive")
@click.option("--max-parallel", type=int, default=None, help="Max concurrent agents (1-10)")
@click.option("--budget", type=float, default=None, help="Total budget ceiling in USD")
@click.option("--no-pr", is_flag=True, help="Commit on task branches but open no PRs")
@click.option("--dry-run", is_flag=True, help="Print the plan without opening issues")
@click.option("--mermaid", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Save the dependency graph as HTML")
@click.pass_context
def plan(
    ctx: click.Context,
    directive: str,
    max_parallel: int | None,
    budget: float | None,
    no_pr: bool,
    dry_run: bool,
    mermaid: Path | None,
) -> None:
    """Decompose DIRECTIVE into issues, then run them in dependency order."""
    cfg = _load(
        ctx,
        max_parallel=max_parallel,
        max_total_budget_usd=budget,
        create_pr=False if no_pr else None,
        dry_run=dry_run or None,
    )

    async def go(runner):
        if not cfg.dry_run:
            return await runner.run_plan(directive)
        _, tasks, graph = await runner.plan(directive)
        _print_plan(tasks, graph)
        if mermaid is not None:
            graph.save_mermaid_diagram(mermaid)
        return True

    _run_pipeline(cfg, go)


def _print_plan(tasks, graph) -> None:
    from issuefleet import log

    log.console.print("[bold]>>> Plan[/bold]")
    for t in tasks:
        deps = ", ".join(f"#{d}" for d in t.depends_on) or "-"
        log.console.print(
            f"  #{t.id} {escape(t.title)} [dim]({t.domain.value}, {t.complexity.value}, after {deps})[/dim]"
        )
    log.console.print("")
    log.console.print(escape(graph.visualize()))


# ── Helpers ──────────────────────────────────────────────────────


def _load(ctx: click.Context, **overrides: object) -> Config:
    from issuefleet import log
    from issuefleet.config import load_config

    obj = ctx.obj or {}
    try:
        cfg = load_config(obj.get("config_path"), repo=obj.get("repo"), verbose=obj.get("verbose") or None, **overrides)
    except IssueFleetError as exc:
        log.error(escape(str(exc)))
        sys.exit(1)
    if not cfg.repo:
        log.error("Could not determine the GitHub repository. Pass --repo owner/name or set project.repo.")
        sys.exit(1)
    return cfg


def _run_pipeline(cfg: Config, action) -> None:
    """Pre-flight checks, then drive *action(runner)* on a fresh event loop."""
    from issuefleet import log
    from issuefleet.artifacts import init_artifacts_dir
    from issuefleet.config import resolve_repo_root
    from issuefleet.engines.claude import ClaudeEngine
    from issuefleet.runner import Runner

    # ── Pre-flight ───────────────────────────────────────────────
    engine = ClaudeEngine()
    err = engine.check_available()
    if err:
        log.error(err)
        sys.exit(1)
    if not shutil.which("gh"):
        log.error("GitHub CLI (gh) is required. Install from https://cli.github.com/")
        sys.exit(1)

    cfg.repo_root = str(resolve_repo_root())
    if not cfg.dry_run:
        init_artifacts_dir(cfg, Path(cfg.repo_root))

    runner = Runner(cfg, engine)
    try:
        ok = asyncio.run(action(runner))
    except IssueFleetError as exc:
        log.error(escape(str(exc)))
        hint = getattr(exc, "recovery_hint", "")
        if hint:
            log.info(escape(hint))
        sys.exit(1)
    except KeyboardInterrupt:
        log.warn("Interrupted")
        sys.exit(130)
    sys.exit(0 if ok else 1)
