"""
Elevatr CLI - Status command.

Show a user's sprints, the active sprint and its progress.
"""

import typer
from rich.table import Table

from elevatr.cli.common import console, fail, run_async, sign_in
from elevatr.core.models import SprintStatus

app = typer.Typer(
    name="status",
    help="Show sprints and progress of a user",
    no_args_is_help=False,
)

_STATUS_STYLES = {
    SprintStatus.ACTIVE: "green",
    SprintStatus.PLANNING: "cyan",
    SprintStatus.PAUSED: "yellow",
    SprintStatus.COMPLETED: "dim",
}


@app.callback(invoke_without_command=True)
def status(
    user: str = typer.Option(..., "--user", "-u", help="User id to show"),
) -> None:
    """
    Show sprints, the active sprint and its progress.

    Examples:
        elevatr status --user local_1700000000000_abc123xyz
        elevatr status -u guest_1700000000000_k3j9x0a1b
    """
    ctx = run_async(sign_in(user))

    for store in (ctx.sprints, ctx.tasks, ctx.progress):
        if store.error:
            fail(store.error)

    if not ctx.sprints.sprints:
        console.print(f"[yellow]No sprints for {user}[/yellow]")
        return

    table = Table(title=f"Sprints of {user}")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Days", justify="right")
    table.add_column("Tasks", justify="right")
    for sprint in ctx.sprints.sprints:
        style = _STATUS_STYLES.get(sprint.status, "white")
        table.add_row(
            sprint.id,
            sprint.title,
            f"[{style}]{sprint.status.value}[/{style}]",
            str(len(sprint.days)),
            str(sprint.total_tasks),
        )
    console.print(table)

    active = ctx.sprints.active_sprint
    if active is None:
        return
    console.print(f"\n[bold]Active sprint:[/bold] {active.title} ({active.id})")

    progress = ctx.progress.user_progress
    if progress is None:
        console.print("[dim]No progress recorded[/dim]")
        return

    stats = progress.stats
    streaks = progress.streaks
    console.print(
        f"Completed: {stats.total_tasks_completed}/{active.total_tasks} tasks "
        f"({stats.completion_percentage}%), {stats.total_days_completed} days"
    )
    console.print(
        f"Task streak: {streaks.current_task_streak} (best {streaks.longest_task_streak})  "
        f"Journal streak: {streaks.current_journal_streak} "
        f"(best {streaks.longest_journal_streak})"
    )
