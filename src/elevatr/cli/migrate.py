"""
Elevatr CLI - Migrate command.

Move a guest session's data to another user.
"""

import typer

from elevatr.cli.common import console, fail, run_async
from elevatr.core.config import load_config
from elevatr.core.identity import UserKind, is_guest_user
from elevatr.core.storage import (
    StorageError,
    create_router,
    get_data_summary,
    migrate_guest_data_to_user,
)

app = typer.Typer(
    name="migrate",
    help="Move guest data to another user",
    no_args_is_help=False,
)


@app.callback(invoke_without_command=True)
def migrate(
    guest: str = typer.Option(..., "--guest", "-g", help="Guest id to migrate from"),
    user: str = typer.Option(..., "--user", "-u", help="User id to migrate to"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Only show what would be migrated"
    ),
) -> None:
    """
    Copy a guest's sprints and progress to a user, then delete the guest data.

    The guest data is kept when anything fails to copy.

    Examples:
        elevatr migrate --guest guest_1700000000000_k3j9x0a1b --user local_1700000000000_abc123xyz
        elevatr migrate -g guest_1700000000000_k3j9x0a1b -u Zk81hFq2 --dry-run
    """
    if not is_guest_user(guest):
        fail(f"{guest} is not a guest id")
    if is_guest_user(user):
        fail("Cannot migrate into another guest session")

    router = create_router(load_config())
    try:
        summary = run_async(get_data_summary(router.for_kind(UserKind.GUEST), guest))
    except StorageError as e:
        fail(str(e))

    if summary is None:
        console.print(f"[yellow]No data to migrate for {guest}[/yellow]")
        return

    console.print(
        f"{len(summary.sprints)} sprints, {summary.total_tasks} task statuses, "
        f"{summary.total_journal_entries} journal entries"
    )
    if dry_run:
        return

    try:
        result = run_async(migrate_guest_data_to_user(router, guest, user))
    except StorageError as e:
        fail(str(e))

    if not result.success:
        for error in result.errors:
            console.print(f"[red]{error}[/red]")
        fail("Migration incomplete, guest data kept")

    console.print(
        f"[green]Migrated {result.sprints} sprints, {result.tasks} task statuses and "
        f"{result.journal_entries} journal entries to {user}[/green]"
    )
