"""
CLI utility helpers -- container access, async execution and output.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from knoa.core.container import ServiceContainer
from knoa.core.errors import ApplicationError, is_user_facing
from knoa.core.events.helpers import generate_request_id, generate_trace_id
from knoa.core.services import build_container, get_container
from knoa.core.settings import get_settings

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")

EXIT_USER_ERROR = 1
EXIT_UNEXPECTED = 2


# ── Container helper ─────────────────────────────────────────────────────


def container_for(ctx: typer.Context | None) -> ServiceContainer:
    """The process container, or one rooted at ``--base-path`` when given."""
    obj = ctx.obj if ctx is not None and isinstance(ctx.obj, dict) else {}
    if obj.get("container") is not None:
        return obj["container"]
    base_path: Path | None = obj.get("base_path")
    if base_path is None:
        return get_container()
    settings = get_settings().model_copy(update={"base_path": base_path})
    obj["container"] = build_container(settings)
    return obj["container"]


def adapter(ctx: typer.Context | None, name: str) -> Any:
    return container_for(ctx).get(f"{name}_adapter")


# ── Execution ────────────────────────────────────────────────────────────


def run(operation: Callable[[], Awaitable[T]]) -> T:
    """Run an async operation and map failures to exit codes.

    ValidationError, NotFoundError and CliError exit with 1; anything else
    exits with 2 after printing the trace and request IDs.
    """
    try:
        return asyncio.run(operation())
    except typer.Exit:
        raise
    except Exception as e:
        if is_user_facing(e):
            report_user_error(e)
            raise typer.Exit(code=EXIT_USER_ERROR) from e
        report_unexpected_error(e)
        raise typer.Exit(code=EXIT_UNEXPECTED) from e


def report_user_error(error: BaseException) -> None:
    message = getattr(error, "message", None) or str(error)
    code = getattr(error, "code", None) or "ERROR"
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    for detail in getattr(error, "errors", None) or []:
        err_console.print(f"  - {detail}")
    cause = getattr(error, "cause", None)
    if cause is not None and cause is not error:
        err_console.print(f"  [dim]caused by: {getattr(cause, 'message', None) or cause}[/dim]")


def report_unexpected_error(error: BaseException) -> None:
    context = error.context if isinstance(error, ApplicationError) else {}
    trace_id = context.get("traceId") or generate_trace_id()
    request_id = context.get("requestId") or generate_request_id()
    err_console.print(f"[bold red]Unexpected error[/bold red]: {error}")
    err_console.print(f"[dim]traceId={trace_id} requestId={request_id}[/dim]")


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


def print_tasks(tasks: list[dict[str, Any]], *, title: str = "Tasks") -> None:
    if not tasks:
        console.print("[dim]No tasks.[/dim]")
        return
    table = Table(title=title, show_header=True, header_style="bold cyan")
    for column in ("ID", "Title", "Status", "Progress", "Priority"):
        table.add_column(column)
    for task in tasks:
        table.add_row(
            str(task.get("id", "")),
            str(task.get("title", "")),
            str(task.get("status", "")),
            f"{task.get('progress_state', 'not_started')} ({task.get('progress_percentage', 0)}%)",
            str(task.get("priority", "")),
        )
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    table = Table(title=title or None, show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        table.add_row(str(key), str(value))
    console.print(table)
