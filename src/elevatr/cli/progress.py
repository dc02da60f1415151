"""
Elevatr CLI - Progress commands.

Toggle task slots and write journal entries of the active sprint.
"""

import typer

from elevatr.cli.common import console, fail, run_async, sign_in
from elevatr.core.models import TaskType

app = typer.Typer(
    name="progress",
    help="Record progress on the active sprint",
    no_args_is_help=True,
)


@app.command()
def toggle(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    day: str = typer.Option(..., "--day", "-d", help="Sprint day number"),
    task_type: TaskType = typer.Option(TaskType.CORE, "--type", "-t", help="Task list of the day"),
    index: int = typer.Option(..., "--index", "-i", min=0, help="Position in the task list"),
    undo: bool = typer.Option(False, "--undo", help="Mark the task as not completed"),
) -> None:
    """
    Mark a task slot of the active sprint completed (or not, with --undo).

    Examples:
        elevatr progress toggle -u local_1700000000000_abc123xyz -d 1 -i 0
        elevatr progress toggle -u local_1700000000000_abc123xyz -d 1 -t special -i 0 --undo
    """

    async def _run() -> str:
        ctx = await sign_in(user, route="/progress")
        active = ctx.sprints.active_sprint
        if active is None:
            return ctx.sprints.error or "No active sprint"
        if ctx.progress.user_progress is None:
            return ctx.progress.error or "No progress record for the active sprint"
        try:
            await ctx.progress.update_task_status(
                user, active.id, day, task_type, index, completed=not undo
            )
        except Exception:
            return ctx.progress.error or "Failed to update task status"
        stats = ctx.progress.user_progress.stats
        state = "not completed" if undo else "completed"
        console.print(
            f"[green]Day {day} {task_type.value} task {index} marked {state}[/green] "
            f"({stats.completion_percentage}% of sprint)"
        )
        return ""

    error = run_async(_run())
    if error:
        fail(error)


@app.command()
def journal(
    content: str = typer.Argument(..., help="Journal text for the day"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    day: str = typer.Option(..., "--day", "-d", help="Sprint day number"),
) -> None:
    """
    Write (or replace) the journal entry of a day of the active sprint.

    Examples:
        elevatr progress journal -u local_1700000000000_abc123xyz -d 3 "Finished the mock interview"
    """

    async def _run() -> str:
        ctx = await sign_in(user, route=f"/journal/{day}")
        active = ctx.sprints.active_sprint
        if active is None:
            return ctx.sprints.error or "No active sprint"
        if ctx.progress.user_progress is None:
            return ctx.progress.error or "No progress record for the active sprint"
        try:
            await ctx.progress.update_journal(user, active.id, day, content)
        except Exception:
            return ctx.progress.error or "Failed to update journal"
        console.print(f"[green]Journal for day {day} saved[/green]")
        return ""

    error = run_async(_run())
    if error:
        fail(error)
