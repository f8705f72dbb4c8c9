"""Claude Code engine adapter."""

from __future__ import annotations

import json
import shutil

from issuefleet.engines.base import AgentOptions, AgentResponse, EngineBase
from issuefleet.errors import AgentError, ErrorType
from issuefleet.failure_patterns import match_error_text


class ClaudeEngine(EngineBase):
    name = "claude"

    def build_cmd(self, prompt: str, options: AgentOptions) -> list[str]:
        # Resolved path so the child process gets an absolute binary.
        claude = shutil.which("claude") or "claude"
        cmd = [claude]
        if options.resume_session:
            cmd += ["--resume", options.resume_session]
        cmd += [
            "-p",
            prompt,
            "--output-format",
            "json",
            "--model",
            options.model,
            "--max-turns",
            str(options.effective_max_turns),
        ]
        if options.system_prompt.strip():
            cmd += ["--append-system-prompt", options.system_prompt]
        if options.budget_ceiling > 0:
            cmd += ["--max-budget-usd", f"{options.budget_ceiling:g}"]
        if options.skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        return cmd

    def subprocess_env(self) -> dict[str, str]:
        env = super().subprocess_env()
        # A parent Claude Code session must not leak into the child.
        env.pop("CLAUDECODE", None)
        return env

    def parse_output(self, raw: str) -> AgentResponse:
        envelope = self._find_envelope(raw)
        if envelope is None:
            preview = raw[:300].replace("\n", "\\n")
            raise AgentError(f"Could not parse Claude JSON output: {preview}", ErrorType.UNKNOWN)

        content = envelope.get("result")
        if not isinstance(content, str):
            content = f"[Agent stopped: {envelope.get('subtype') or 'unknown'}]"
        if envelope.get("is_error", not isinstance(envelope.get("result"), str)):
            raise AgentError(f"Claude agent error: {content}", match_error_text(content))

        return AgentResponse(
            content=content,
            session_id=str(envelope.get("session_id", "")),
            cost_usd=float(envelope.get("total_cost_usd") or 0.0),
            duration_ms=int(envelope.get("duration_ms") or 0),
        )

    @staticmethod
    def _find_envelope(raw: str) -> dict | None:
        """Return the result envelope, scanning from the last line upward."""
        candidates = list(reversed(raw.strip().splitlines())) + [raw]
        for line in candidates:
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(obj, dict):
                continue
            if isinstance(obj.get("result"), str):
                return obj
            if obj.get("type") == "result" and obj.get("session_id"):
                return obj
        return None

    def check_available(self) -> str | None:
        if not shutil.which("claude"):
            return "Claude Code CLI not found. Install from https://github.com/anthropics/claude-code"
        return None
