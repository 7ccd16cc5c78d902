"""API key commands -- manage the client keys the proxy accepts.

These talk to the management API only; the proxy must be running.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

from keyrelay.commands import run_with_services
from keyrelay.output import info, print_table, success

if TYPE_CHECKING:
    from keyrelay.runtime import Services

keys_app = typer.Typer(no_args_is_help=True)


def _mask(key: str) -> str:
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}...{key[-4:]}"


@keys_app.command("list")
def keys_list(
    ctx: typer.Context,
    reveal: bool = typer.Option(False, "--reveal", help="Show full keys."),
) -> None:
    """List API keys (masked unless ``--reveal``)."""

    async def _run(services: Services) -> list[str]:
        return await services.client.list_api_keys()

    keys = run_with_services(ctx, _run)
    if not keys:
        info("No API keys configured.")
    shown = keys if reveal else [_mask(k) for k in keys]
    print_table(["Key"], [[k] for k in shown], title="API keys", records=[{"key": k} for k in shown])


@keys_app.command("add")
def keys_add(ctx: typer.Context, key: str = typer.Argument(help="Key to add.")) -> None:
    """Add an API key."""

    async def _run(services: Services) -> None:
        await services.client.add_api_key(key)

    run_with_services(ctx, _run)
    success(f"Added key {_mask(key)}")


@keys_app.command("delete")
def keys_delete(ctx: typer.Context, key: str = typer.Argument(help="Key to delete.")) -> None:
    """Delete an API key."""

    async def _run(services: Services) -> None:
        await services.client.delete_api_key(key)

    run_with_services(ctx, _run)
    success(f"Deleted key {_mask(key)}")
