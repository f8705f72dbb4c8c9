"""Base class for coding-agent engine adapters."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from issuefleet import log
from issuefleet.engines.validation import (
    validate_budget,
    validate_model,
    validate_prompt,
    validate_session_id,
    validate_timeout,
    validate_work_dir,
)
from issuefleet.errors import AgentError, ErrorType
from issuefleet.failure_patterns import looks_like_rate_limit, match_error_text

DEFAULT_TIMEOUT = 600.0
KILL_GRACE_SECONDS = 5.0

DEFAULT_MAX_TURNS: dict[str, int] = {
    "opus": 5,
    "sonnet": 8,
    "haiku": 12,
}


@dataclass
class AgentOptions:
    """Per-invocation settings for an agent run."""

    model: str = "sonnet"
    budget_ceiling: float = 5.0
    system_prompt: str = ""
    work_dir: Path | None = None
    timeout: float = DEFAULT_TIMEOUT
    max_turns: int | None = None
    skip_permissions: bool = True
    resume_session: str = ""
    log_file: Path | None = None

    @property
    def effective_max_turns(self) -> int:
        if self.max_turns:
            return self.max_turns
        return DEFAULT_MAX_TURNS.get(self.model, 8)


@dataclass
class AgentResponse:
    """Uniform result from any engine invocation."""

    content: str = ""
    session_id: str = ""
    cost_usd: float = 0.0
    duration_ms: int = 0


class EngineBase(ABC):
    """Abstract engine adapter.  Subclasses implement ``build_cmd`` and ``parse_output``."""

    name: str = "base"

    @abstractmethod
    def build_cmd(self, prompt: str, options: AgentOptions) -> list[str]:
        """Return the CLI command list for the given prompt."""
        ...

    @abstractmethod
    def parse_output(self, raw: str) -> AgentResponse:
        """Parse raw stdout into an :class:`AgentResponse`.

        Raises :class:`AgentError` when the output reports a failure.
        """
        ...

    def check_available(self) -> str | None:
        """Return an error message if the engine CLI is not available, else None."""
        cmd_name = self.build_cmd("test", AgentOptions())[0]
        if not shutil.which(cmd_name):
            return f"{cmd_name} not found in PATH"
        return None

    def validate(self, prompt: str, options: AgentOptions) -> None:
        validate_prompt(prompt, "prompt")
        validate_model(options.model)
        validate_budget(options.budget_ceiling)
        if options.system_prompt.strip():
            validate_prompt(options.system_prompt, "system prompt")
        validate_timeout(options.timeout)
        if options.work_dir is not None:
            validate_work_dir(options.work_dir)
        if options.resume_session:
            validate_session_id(options.resume_session)

    def subprocess_env(self) -> dict[str, str]:
        return dict(os.environ)

    async def invoke(self, prompt: str, options: AgentOptions) -> AgentResponse:
        """Run the agent once and return its parsed response.

        Raises :class:`ValidationError` before spawning on bad input and
        :class:`AgentError`, tagged with an :class:`ErrorType`, on failure.
        """
        self.validate(prompt, options)
        cmd = self.build_cmd(prompt, options)
        start = time.monotonic()
        log.debug(f"Spawning {self.name} ({options.model}, max turns {options.effective_max_turns})")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=options.work_dir,
                env=self.subprocess_env(),
            )
        except FileNotFoundError:
            raise AgentError(
                f"{cmd[0]} not found",
                ErrorType.VALIDATION,
                f"Install the {self.name} CLI and make sure it is on PATH",
            ) from None

        try:
            raw_out, raw_err = await asyncio.wait_for(proc.communicate(), timeout=options.timeout)
        except asyncio.TimeoutError:
            await self._terminate_process(proc)
            raise AgentError(
                f"{self.name} timed out after {options.timeout:.0f}s",
                ErrorType.TIMEOUT,
            ) from None
        except asyncio.CancelledError:
            await self._terminate_process(proc)
            raise

        stdout = raw_out.decode("utf-8", errors="replace")
        stderr = raw_err.decode("utf-8", errors="replace")
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if options.log_file and stderr:
            options.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(options.log_file, "a", encoding="utf-8") as f:
                f.write(stderr)

        if proc.returncode != 0:
            detail = self._check_errors(stdout) or stderr.strip()[:500] or f"exit code {proc.returncode}"
            error_type = match_error_text(detail)
            if error_type == ErrorType.UNKNOWN:
                error_type = ErrorType.CRASH
            raise AgentError(
                f"{self.name} exited {proc.returncode}: {detail}",
                error_type,
                exit_code=proc.returncode,
            )

        response = self.parse_output(stdout)
        if not response.duration_ms:
            response.duration_ms = elapsed_ms
        return response

    @staticmethod
    async def _terminate_process(proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL after a grace period."""
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    @staticmethod
    def _check_errors(raw: str) -> str:
        """Detect error envelopes in JSON-lines engine output."""
        for line in raw.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            try:
                obj = json.loads(stripped)
            except json.JSONDecodeError:
                continue
            if not isinstance(obj, dict):
                continue

            err = obj.get("error")
            if isinstance(err, dict):
                msg = str(err.get("message", "")).strip()
                code = str(err.get("type", "") or err.get("code", "")).strip().lower()
                if looks_like_rate_limit(code):
                    return msg or "Rate limit exceeded"
                if msg:
                    return msg
            if isinstance(err, str) and err.strip():
                return err.strip()
            if str(obj.get("type", "")).lower() == "error":
                msg = obj.get("message") or obj.get("text") or ""
                return str(msg).strip() or "Unknown error"
        return ""
