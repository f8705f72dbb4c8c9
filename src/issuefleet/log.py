"""Logging utilities with colored output via Rich."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def _fmt(msg: str, fields: dict[str, object]) -> str:
    if not fields:
        return msg
    ctx = " ".join(f"{k}={escape(str(v))}" for k, v in fields.items())
    return f"{msg} [dim]{ctx}[/dim]"


def info(msg: str, **fields: object) -> None:
    console.print(f"[blue]\\[INFO][/blue] {_fmt(msg, fields)}")


def success(msg: str, **fields: object) -> None:
    console.print(f"[green]\\[OK][/green] {_fmt(msg, fields)}")


def warn(msg: str, **fields: object) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {_fmt(msg, fields)}")


def error(msg: str, **fields: object) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {_fmt(msg, fields)}")


def debug(msg: str, **fields: object) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {_fmt(msg, fields)}[/dim]")
