"""
Root Typer application for the knoa CLI.

Every command resolves an adapter from the service container and runs the
adapter call with :func:`knoa.cli.utils.run`, which maps failures to exit
codes: 0 success, 1 user-facing error, 2 anything else.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

import typer
from rich.prompt import IntPrompt, Prompt

from knoa import __version__
from knoa.cli.utils import adapter, console, print_dict, print_json, print_tasks, run
from knoa.data.constants import PROGRESS_STATES
from knoa.managers.integration import REPORT_TYPES

app = typer.Typer(
    name="knoa",
    help="knoa - tasks, sessions and feedback for AI-assisted development.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
task_app = typer.Typer(no_args_is_help=True)
app.add_typer(task_app, name="task", help="Task inspection and progress.")


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"knoa {__version__}")
        raise typer.Exit()


def _one_of(choices: Sequence[str]) -> Callable[[str], str]:
    def check(value: str) -> str:
        if value not in choices:
            raise typer.BadParameter(f"must be one of: {', '.join(choices)}")
        return value

    return check


@app.callback()
def main(
    ctx: typer.Context,
    base_path: Path | None = typer.Option(
        None, "--base-path", "-C", help="Project root holding ai-context/."
    ),
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """knoa CLI - manage tasks, sessions and feedback."""
    ctx.obj = {"base_path": base_path}


# ── Tasks ────────────────────────────────────────────────────────────────


@app.command("create-task")
def create_task(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    description: str = typer.Argument(..., help="Task description"),
    priority: int = typer.Option(3, "--priority", "-p", min=1, max=5),
    status: str = typer.Option("pending", "--status", "-s"),
    estimated_hours: float | None = typer.Option(None, "--estimated-hours", "-e"),
    depends_on: list[str] | None = typer.Option(
        None, "--depends-on", "-d", help="Task id this task depends on (repeatable)"
    ),
) -> None:
    """Create a task with the next free id."""
    tasks = adapter(ctx, "task")
    task = run(
        lambda: tasks.create_task(
            title,
            description,
            priority=priority,
            status=status,
            estimated_hours=estimated_hours,
            dependencies=depends_on or None,
        )
    )
    console.print(f"[green]Created task {task['id']}[/green]: {task['title']}")


@app.command("update-task")
def update_task(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    status: str | None = typer.Option(None, "--status", "-s"),
    progress: int | None = typer.Option(None, "--progress", min=0, max=100),
) -> None:
    """Update a task's status and/or progress percentage."""
    tasks = adapter(ctx, "task")
    task = run(lambda: tasks.update_task(task_id, status=status, progress=progress))
    console.print(
        f"[green]Updated task {task['id']}[/green]: "
        f"{task.get('status')} ({task.get('progress_percentage', 0)}%)"
    )


@task_app.command("list")
def list_tasks(
    ctx: typer.Context,
    status: str | None = typer.Option(None, "--status", "-s"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List tasks, optionally filtered by status."""
    tasks = adapter(ctx, "task")
    result = run(lambda: tasks.list_tasks(status))
    if json_out:
        print_json(result)
    else:
        print_tasks(result)


@task_app.command("info")
def task_info(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one task."""
    tasks = adapter(ctx, "task")
    task = run(lambda: tasks.get_task(task_id))
    if json_out:
        print_json(task)
    else:
        print_dict(task, title=f"Task {task_id}")


@task_app.command("progress")
def task_progress(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    state: str = typer.Argument(
        ..., callback=_one_of(tuple(PROGRESS_STATES)), help="New progress state"
    ),
    percentage: int | None = typer.Option(None, "--percentage", min=0, max=100),
) -> None:
    """Move a task to a new progress state."""
    tasks = adapter(ctx, "task")
    task = run(lambda: tasks.update_task_progress(task_id, state, percentage))
    console.print(
        f"[green]{task['id']}[/green] is now {task['progress_state']} "
        f"({task['progress_percentage']}%)"
    )


@task_app.command("delete")
def task_delete(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Archive and delete a task."""
    if not yes:
        typer.confirm(f"Delete task {task_id}?", abort=True)
    tasks = adapter(ctx, "task")
    run(lambda: tasks.delete_task(task_id))
    console.print(f"[green]Deleted task {task_id}[/green]")


@task_app.command("link")
def task_link(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    commit: str = typer.Argument(..., help="Commit hash"),
) -> None:
    """Associate a commit with a task."""
    tasks = adapter(ctx, "task")
    task = run(lambda: tasks.link_task_to_commit(task_id, commit))
    console.print(
        f"[green]{task['id']}[/green] linked to {commit} "
        f"({len(task.get('git_commits') or [])} commit(s))"
    )


# ── Sessions ─────────────────────────────────────────────────────────────


@app.command("start-session")
def start_session(
    ctx: typer.Context,
    previous: str | None = typer.Option(None, "--previous", help="Previous session ID"),
) -> None:
    """Start a session carrying over the previous one."""
    sessions = adapter(ctx, "session")
    session = run(lambda: sessions.start_session(previous))
    handover = session["session_handover"]
    console.print(f"[green]Session started[/green]: {handover['session_id']}")
    if handover.get("previous_session_id"):
        console.print(f"Previous session: {handover['previous_session_id']}")


@app.command("end-session")
def end_session(
    ctx: typer.Context,
    session_id: str | None = typer.Argument(None, help="Session ID (defaults to latest)"),
) -> None:
    """End a session and write the handover document."""
    sessions = adapter(ctx, "session")
    result = run(lambda: sessions.end_session(session_id))
    handover = result["session_handover"]
    console.print(f"[green]Session ended[/green]: {handover['session_id']}")
    console.print(f"Handover document: {result['handover_path']}")


# ── Feedback ─────────────────────────────────────────────────────────────


@app.command("collect-feedback")
def collect_feedback(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    test_command: str | None = typer.Option(None, "--command", "-c", help="Test command"),
) -> None:
    """Run the task's tests and record the outcome as feedback."""
    feedback = adapter(ctx, "feedback")
    result = run(lambda: feedback.collect_feedback(task_id, test_command))
    loop = result["feedback_loop"]
    console.print(
        f"[green]Feedback {result['feedback_id']}[/green]: "
        f"{loop['verification_results']['status']}, priority {loop.get('priority')}"
    )


@app.command("resolve-feedback")
def resolve_feedback(
    ctx: typer.Context,
    feedback_id: str = typer.Argument(..., help="Feedback ID"),
) -> None:
    """Mark feedback resolved and move it to history."""
    feedback = adapter(ctx, "feedback")
    run(lambda: feedback.resolve_feedback(feedback_id))
    console.print(f"[green]Resolved feedback {feedback_id}[/green]")


# ── Integration ──────────────────────────────────────────────────────────


@app.command()
def report(
    ctx: typer.Context,
    report_type: str = typer.Argument(
        "workflow_status", callback=_one_of(REPORT_TYPES), help="Report type"
    ),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to file"),
) -> None:
    """Generate a Markdown report."""
    integration = adapter(ctx, "integration")
    text = run(lambda: integration.generate_report(report_type))
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
        console.print(f"[green]Report written to {output}[/green]")
    else:
        console.print(text, markup=False, highlight=False)


@app.command()
def status(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show task counts, current focus, latest session and pending feedback."""
    integration = adapter(ctx, "integration")
    result = run(integration.get_workflow_status)
    if json_out:
        print_json(result)
        return
    tasks = result["tasks"]
    session = result.get("session")
    print_dict(
        {
            "state": result.get("state") or "-",
            "tasks": tasks["total"],
            **{f"  {k}": v for k, v in sorted(tasks["by_status"].items())},
            "current focus": result.get("current_focus") or "-",
            "latest session": session["session_id"] if session else "-",
            "pending feedback": result["pending_feedback"],
        },
        title="Workflow Status",
    )


@app.command()
def sync(
    ctx: typer.Context,
    since: str | None = typer.Option(None, "--since", help="Starting commit"),
) -> None:
    """Link tasks mentioned in recent commit messages."""
    integration = adapter(ctx, "integration")
    result = run(lambda: integration.sync_components(since))
    console.print(
        f"[green]Synced {result['commits']} commit(s)[/green], "
        f"{len(result['linked'])} link(s)"
    )
    if result["unknown_tasks"]:
        console.print(f"[yellow]Unknown tasks:[/yellow] {', '.join(result['unknown_tasks'])}")


@app.command()
def interactive(ctx: typer.Context) -> None:
    """Menu-driven loop over the most common commands."""
    choices = ["status", "tasks", "create", "progress", "report", "quit"]
    while True:
        choice = Prompt.ask("knoa", choices=choices, default="status", console=console)
        if choice == "quit":
            break
        try:
            if choice == "status":
                status(ctx, json_out=False)
            elif choice == "tasks":
                list_tasks(ctx, status=None, json_out=False)
            elif choice == "create":
                create_task(
                    ctx,
                    title=Prompt.ask("Title", console=console),
                    description=Prompt.ask("Description", console=console),
                    priority=IntPrompt.ask("Priority", default=3, console=console),
                    status="pending",
                    estimated_hours=None,
                    depends_on=None,
                )
            elif choice == "progress":
                task_progress(
                    ctx,
                    task_id=Prompt.ask("Task ID", console=console),
                    state=Prompt.ask("Progress state", console=console),
                    percentage=None,
                )
            elif choice == "report":
                report_type = Prompt.ask(
                    "Report type",
                    choices=list(REPORT_TYPES),
                    default="workflow_status",
                    console=console,
                )
                report(ctx, report_type=report_type, output=None)
        except typer.Exit:
            continue
    console.print("Bye.")
