"""
Shared helpers for CLI commands.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any, NoReturn, TypeVar

import typer
from rich.console import Console

from elevatr.core.context import StoreContext, create_context
from elevatr.core.sync import DataSync

T = TypeVar("T")

console = Console()


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine from Typer's sync command context."""
    return asyncio.run(coro)


def fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


async def sign_in(user_id: str, route: str = "/") -> StoreContext:
    """
    Build a context and load everything for ``user_id``.

    Sprints, the active sprint, tasks and the active sprint's progress are
    loaded the same way an interactive sign-in does. ``route`` is recorded as
    the current page in the persisted navigation state.
    """
    ctx = create_context()
    sync = DataSync(ctx)
    try:
        await sync.on_auth_change(user_id)
        await sync.wait_idle()
    finally:
        sync.close()

    ctx.navigation.load()
    ctx.app.set_current_route(route)
    ctx.navigation.flush()
    return ctx
