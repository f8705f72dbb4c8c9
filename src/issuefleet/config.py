"""Configuration defaults, env vars, config file and runtime options."""

from __future__ import annotations

import json
import os
import re
import subprocess
from dataclasses import dataclass, fields
from pathlib import Path

from issuefleet.errors import ValidationError


VERSION = "1.0.0"

CONFIG_FILENAME = "issuefleet.json"

MODELS = ("opus", "sonnet", "haiku")


@dataclass
class Config:
    """Runtime configuration for a run."""

    # Project
    repo: str = ""
    base_branch: str = "main"

    # Execution
    max_parallel: int = 3
    timeout_minutes: int = 30
    create_pr: bool = True
    draft_pr: bool = False
    dry_run: bool = False

    # Agent
    agent_model: str = "sonnet"
    agent_budget_usd: float = 5.0
    agent_max_turns: int = 0
    skip_permissions: bool = True

    # Planner
    planner_model: str = "sonnet"
    planner_budget_usd: float = 2.0

    # Budget
    max_total_budget_usd: float = 50.0

    # Resilience
    max_retries: int = 2
    retry_base_delay: float = 1.0
    retry_max_delay: float = 32.0
    breaker_threshold: int = 5
    breaker_reset_seconds: float = 60.0

    # Misc
    metrics_enabled: bool = True
    verbose: bool = False
    worktree_prefix: str = "issuefleet-"

    # Derived / runtime state (not user-set)
    artifacts_dir: str = ""
    repo_root: str = ""

    def __post_init__(self) -> None:
        if os.environ.get("ISSUEFLEET_DISABLE_METRICS", "").lower() == "true":
            self.metrics_enabled = False
        env_budget = os.environ.get("ISSUEFLEET_MAX_BUDGET_USD")
        if env_budget:
            try:
                self.max_total_budget_usd = float(env_budget)
            except ValueError:
                raise ValidationError(
                    f"ISSUEFLEET_MAX_BUDGET_USD is not a number: {env_budget!r}",
                    "Set it to a dollar amount such as 25 or 12.5",
                ) from None
        self.validate()

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60.0

    def validate(self) -> None:
        """Raise :class:`ValidationError` on out-of-range settings."""
        if not 1 <= self.max_parallel <= 10:
            raise ValidationError(
                f"max_parallel must be between 1 and 10, got {self.max_parallel}",
                "Pick a slot count between 1 and 10",
            )
        if not 1 <= self.timeout_minutes <= 60:
            raise ValidationError(
                f"timeout_minutes must be between 1 and 60, got {self.timeout_minutes}",
            )
        for name in ("agent_model", "planner_model"):
            value = getattr(self, name)
            if value not in MODELS:
                raise ValidationError(
                    f"{name} must be one of {', '.join(MODELS)}, got {value!r}",
                )
        for name in ("agent_budget_usd", "planner_budget_usd", "max_total_budget_usd"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} cannot be negative")
        if self.max_retries < 0:
            raise ValidationError(f"max_retries cannot be negative, got {self.max_retries}")
        if self.breaker_threshold < 1:
            raise ValidationError(f"breaker_threshold must be at least 1, got {self.breaker_threshold}")
        if self.repo and not re.fullmatch(r"[\w.-]+/[\w.-]+", self.repo):
            raise ValidationError(
                f"repo must look like owner/name, got {self.repo!r}",
                "Use the GitHub slug, e.g. acme/widgets",
            )


# Nested keys accepted in issuefleet.json, mapped onto flat Config fields.
_SECTION_KEYS: dict[str, dict[str, str]] = {
    "project": {"repo": "repo", "base_branch": "base_branch"},
    "executor": {
        "max_parallel": "max_parallel",
        "timeout_minutes": "timeout_minutes",
        "create_pr": "create_pr",
        "pr_draft": "draft_pr",
    },
    "agent": {
        "model": "agent_model",
        "max_budget_usd": "agent_budget_usd",
        "max_turns": "agent_max_turns",
        "yolo": "skip_permissions",
    },
    "planner": {"model": "planner_model", "max_budget_usd": "planner_budget_usd"},
}


def config_from_dict(data: dict, **overrides: object) -> Config:
    """Build a :class:`Config` from parsed JSON plus CLI overrides."""
    known = {f.name for f in fields(Config)}
    kwargs: dict[str, object] = {}

    for key, value in data.items():
        if key in _SECTION_KEYS:
            if not isinstance(value, dict):
                raise ValidationError(f"Config section {key!r} must be an object")
            mapping = _SECTION_KEYS[key]
            for sub_key, sub_value in value.items():
                if sub_key not in mapping:
                    raise ValidationError(f"Unknown config key: {key}.{sub_key}")
                kwargs[mapping[sub_key]] = sub_value
        elif key in known:
            kwargs[key] = value
        else:
            raise ValidationError(f"Unknown config key: {key}")

    for key, value in overrides.items():
        if value is not None:
            kwargs[key] = value
    return Config(**kwargs)  # type: ignore[arg-type]


def load_config(path: Path | None = None, **overrides: object) -> Config:
    """Load *path* (or the discovered config file) and apply *overrides*."""
    if path is None:
        path = discover_config()
    data: dict = {}
    if path is not None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ValidationError(f"{path} must contain a JSON object")
    cfg = config_from_dict(data, **overrides)
    if not cfg.repo:
        cfg.repo = parse_github_remote(remote_url()) or ""
    return cfg


def discover_config(cwd: Path | None = None) -> Path | None:
    """Find ``issuefleet.json`` in *cwd*, then at the repository root."""
    cwd = cwd or Path.cwd()
    candidates = [cwd / CONFIG_FILENAME, resolve_repo_root(cwd) / CONFIG_FILENAME]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def resolve_repo_root(cwd: Path | None = None) -> Path:
    """Return the git repository root, falling back to cwd."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
            cwd=cwd,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return cwd or Path.cwd()


def remote_url(cwd: Path | None = None) -> str:
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            check=True,
            cwd=cwd,
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return ""


def parse_github_remote(url: str) -> str | None:
    """Return ``owner/name`` for a GitHub remote URL, or ``None``."""
    m = re.match(r"^(?:https://github\.com/|git@github\.com:)([\w.-]+)/([\w.-]+?)(?:\.git)?/?$", url.strip())
    if not m:
        return None
    return f"{m.group(1)}/{m.group(2)}"
