"""Input validation for agent invocations.

Every check raises :class:`~issuefleet.errors.ValidationError` with a
recovery hint, so bad input is rejected before a process is spawned and is
never retried.
"""

from __future__ import annotations

import re
from pathlib import Path

from issuefleet.config import MODELS
from issuefleet.errors import ValidationError

MIN_BUDGET_USD = 0.01
MAX_PROMPT_LENGTH = 100_000
MIN_TIMEOUT_SECONDS = 5.0
MAX_TIMEOUT_SECONDS = 3600.0
MIN_SESSION_ID_LENGTH = 5

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_model(model: str) -> None:
    if model not in MODELS:
        raise ValidationError(f"Invalid model: {model}", f"Must be one of: {', '.join(MODELS)}")


def validate_budget(budget: float) -> None:
    if budget < MIN_BUDGET_USD:
        raise ValidationError(
            f"Invalid budget: ${budget}",
            f"Budget must be at least ${MIN_BUDGET_USD}",
        )


def validate_prompt(prompt: str, label: str = "prompt") -> None:
    if not prompt or not prompt.strip():
        raise ValidationError(f"{label} is empty or whitespace-only", f"Provide a non-empty {label}")
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"{label} exceeds {MAX_PROMPT_LENGTH:,} characters (got {len(prompt):,})",
            "Shorten the task body or split the task",
        )


def validate_timeout(seconds: float) -> None:
    if seconds < MIN_TIMEOUT_SECONDS:
        raise ValidationError(
            f"Timeout too short: {seconds}s",
            f"Timeout must be at least {MIN_TIMEOUT_SECONDS:.0f} seconds",
        )
    if seconds > MAX_TIMEOUT_SECONDS:
        raise ValidationError(
            f"Timeout too long: {seconds}s",
            f"Timeout must be at most {MAX_TIMEOUT_SECONDS:.0f} seconds (1 hour)",
        )


def validate_work_dir(path: Path | str) -> None:
    if not Path(path).is_absolute():
        raise ValidationError(f"Working directory must be absolute: {path}", "Pass an absolute path")


def validate_session_id(session_id: str) -> None:
    if not session_id or not session_id.strip():
        raise ValidationError("Invalid session id: empty", "Use the session id returned by a previous run")
    if len(session_id) < MIN_SESSION_ID_LENGTH:
        raise ValidationError(
            f"Invalid session id {session_id!r}: too short",
            f"Session ids have at least {MIN_SESSION_ID_LENGTH} characters",
        )
    if not _SESSION_ID_RE.match(session_id):
        raise ValidationError(
            f"Invalid session id {session_id!r}: bad characters",
            "Only letters, digits, hyphens and underscores are allowed",
        )
