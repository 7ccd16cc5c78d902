"""Account commands -- list, toggle, delete and create accounts, read quotas.

Provides the ``keyrelay accounts`` sub-command group. Reads go through
:class:`~keyrelay.accounts.store.CredentialStore`, so they work whether or
not the proxy is running; mutations are routed to the channel that owns the
record.

Typical workflow::

    keyrelay accounts list
    keyrelay accounts toggle claude-user.json --disable
    keyrelay accounts create claude me@example.com sk-ant-...
    keyrelay accounts quota
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

import typer

from keyrelay.commands import fail, run_with_services
from keyrelay.output import info, print_document, print_table, success, suggest

if TYPE_CHECKING:
    from keyrelay.models import AccountRecord, QuotaInfo
    from keyrelay.runtime import Services

accounts_app = typer.Typer(no_args_is_help=True)

_HEADERS = ["ID", "Name", "Provider", "Label", "Status", "Enabled", "Source"]


def _row(record: AccountRecord) -> list[str]:
    return [
        record.id,
        record.name,
        record.provider,
        record.label or "",
        record.status.value,
        "no" if record.disabled else "yes",
        record.source,
    ]


def _print_records(records: list[AccountRecord]) -> None:
    print_table(
        _HEADERS,
        [_row(r) for r in records],
        title="Accounts",
        records=[r.model_dump(mode="json") for r in records],
    )


@accounts_app.command("list")
def accounts_list(
    ctx: typer.Context,
    refresh: bool = typer.Option(False, "--refresh", help="Bypass the short-lived cache."),
) -> None:
    """List accounts from the proxy, falling back to the auth directory.

    Example::

        keyrelay accounts list
        keyrelay --json accounts list --refresh
    """

    async def _run(services: Services) -> list[AccountRecord]:
        return await services.accounts.get_accounts(force_refresh=refresh)

    records = run_with_services(ctx, _run)
    if not records:
        info("No accounts found.")
        suggest("Add one with: keyrelay login <provider>")
    _print_records(records)


@accounts_app.command("toggle")
def accounts_toggle(
    ctx: typer.Context,
    account_id: str = typer.Argument(help="Account id or name."),
    disable: bool = typer.Option(
        ..., "--disable/--enable", help="Disable or re-enable the account."
    ),
) -> None:
    """Enable or disable an account.

    File-backed accounts are renamed on disk; accounts known only to the
    proxy are toggled through its management API.
    """

    async def _run(services: Services) -> list[AccountRecord]:
        return await services.accounts.toggle(account_id, disable)

    run_with_services(ctx, _run)
    success(f"{'Disabled' if disable else 'Enabled'} {account_id}")


@accounts_app.command("delete")
def accounts_delete(
    ctx: typer.Context,
    account_id: str = typer.Argument(help="Account id or name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete an account's credential file."""
    if not yes:
        typer.confirm(f"Delete account {account_id}?", abort=True)

    async def _run(services: Services) -> list[AccountRecord]:
        return await services.accounts.delete(account_id)

    run_with_services(ctx, _run)
    success(f"Deleted {account_id}")


@accounts_app.command("create")
def accounts_create(
    ctx: typer.Context,
    provider: str = typer.Argument(help="Provider id, e.g. claude, codex, gemini-cli."),
    email: str = typer.Argument(help="Account email."),
    token: str = typer.Argument(help="Access token to store."),
) -> None:
    """Create an auth file from a pasted access token."""

    async def _run(services: Services) -> AccountRecord:
        return await services.accounts.create(provider, email, token)

    record = run_with_services(ctx, _run)
    success(f"Created {record.name}")
    if record.source_path is not None:
        info(f"Path: {record.source_path}")


@accounts_app.command("models")
def accounts_models(
    ctx: typer.Context,
    name: str = typer.Argument(help="Auth file name as the proxy knows it."),
) -> None:
    """List the models the proxy exposes for one auth file (proxy must run)."""

    async def _run(services: Services) -> list[dict[str, Any]]:
        return await services.client.list_auth_file_models(name)

    models = run_with_services(ctx, _run)
    rows = [[str(m.get("id", "")), str(m.get("owned_by", m.get("type", "")))] for m in models]
    print_table(["Model", "Owner"], rows, title=f"Models for {name}", records=models)


@accounts_app.command("quota")
def accounts_quota(
    ctx: typer.Context,
    provider: Optional[str] = typer.Argument(None, help="Provider id; omit to list every quota."),
    account: Optional[str] = typer.Argument(None, help="Account as the proxy knows it."),
) -> None:
    """Show usage quotas reported by the proxy.

    Example::

        keyrelay accounts quota
        keyrelay accounts quota claude me@example.com
    """
    if (provider is None) != (account is None):
        raise fail("Pass both PROVIDER and ACCOUNT, or neither.")

    async def _run(services: Services) -> list[QuotaInfo]:
        if provider is not None and account is not None:
            return [await services.client.fetch_quota(provider, account)]
        return await services.client.fetch_all_quotas()

    quotas = run_with_services(ctx, _run)
    if not quotas:
        info("No quota information available (is the proxy running?)")
    rows = [
        [
            q.provider,
            q.account,
            "unlimited" if q.is_unlimited else f"{q.used} / {q.limit}",
            "" if q.is_unlimited else f"{q.percentage_used:.0f}%",
            q.reset_at or "",
            q.status,
        ]
        for q in quotas
    ]
    print_table(
        ["Provider", "Account", "Used", "%", "Resets", "Status"],
        rows,
        title="Quotas",
        records=[q.model_dump(mode="json") for q in quotas],
    )


@accounts_app.command("usage")
def accounts_usage(ctx: typer.Context) -> None:
    """Print the proxy's usage statistics as JSON (empty when unavailable)."""

    async def _run(services: Services) -> dict[str, Any]:
        return await services.client.fetch_usage()

    print_document(run_with_services(ctx, _run))
