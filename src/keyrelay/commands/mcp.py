"""MCP commands -- configure the MCP integration and sync it into the tool.

Provides the ``keyrelay mcp`` sub-command group. Commands that change the
integration (``enable``, ``disable``, ``mode``, ``tool``) save the new
settings and then re-apply the server block to the external settings file,
so the file always reflects the saved state.

Typical workflow::

    keyrelay mcp set-key            # prompts for the upstream API key
    keyrelay mcp enable
    keyrelay mcp test
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

import typer

from keyrelay.commands import effective_settings, fail, run_with_services
from keyrelay.exit_codes import EXIT_CONFIG_ERROR, EXIT_CONNECTION_ERROR
from keyrelay.output import info, print_document, print_table, success, suggest, warning

if TYPE_CHECKING:
    from keyrelay.models import ConnectionTestReport
    from keyrelay.runtime import Services

mcp_app = typer.Typer(no_args_is_help=True)


def _save_and_apply(ctx: typer.Context, **updates: Any) -> None:
    """Validate the MCP *updates*, persist them, and re-apply the block.

    Only the changed fields are written to the config file; CLI and
    environment overrides stay out of it.
    """
    from keyrelay.config import load_settings, save_settings

    async def _run(services: Services) -> None:
        services.update_mcp_settings(services.settings.mcp.model_copy(update=updates))
        services.sync.build_block()
        stored = load_settings()
        save_settings(
            stored.model_copy(update={"mcp": stored.mcp.model_copy(update=updates)})
        )
        await services.sync.apply(services.tool_settings_path)

    run_with_services(ctx, _run)


@mcp_app.command("status")
def mcp_status(
    ctx: typer.Context,
    check: bool = typer.Option(False, "--check", help="Probe the first enabled tool now."),
) -> None:
    """Show the integration's settings and, with ``--check``, its connectivity."""
    from keyrelay.config import get_tool_settings_path
    from keyrelay.mcp.catalog import tools_for

    settings = effective_settings(ctx)
    mcp = settings.mcp
    status = "disconnected"
    if check and mcp.enabled:

        async def _run(services: Services) -> str:
            return (await services.health.check_now()).value

        status = run_with_services(ctx, _run)

    print_document(
        {
            "enabled": mcp.enabled,
            "mode": mcp.mode.value,
            "tools": [t.id for t in tools_for(mcp) if t.enabled],
            "settings_path": str(get_tool_settings_path(settings)),
            "status": status,
        }
    )


@mcp_app.command("enable")
def mcp_enable(ctx: typer.Context) -> None:
    """Enable the integration and write the server block."""
    _save_and_apply(ctx, enabled=True)
    success("MCP integration enabled.")
    suggest("Verify with: keyrelay mcp test")


@mcp_app.command("disable")
def mcp_disable(ctx: typer.Context) -> None:
    """Disable the integration and strip keyrelay's entries from the settings file."""
    _save_and_apply(ctx, enabled=False)
    success("MCP integration disabled.")


@mcp_app.command("mode")
def mcp_mode(
    ctx: typer.Context,
    mode: str = typer.Argument(help="'direct' (upstream + API key) or 'proxy' (local relay)."),
) -> None:
    """Switch between direct and proxy mode."""
    from keyrelay.models import ConfigMode

    try:
        config_mode = ConfigMode(mode.lower())
    except ValueError:
        raise fail(f"Unknown mode '{mode}'. Use 'direct' or 'proxy'.") from None
    _save_and_apply(ctx, mode=config_mode)
    success(f"MCP mode set to {config_mode.value}.")


@mcp_app.command("tool")
def mcp_tool(
    ctx: typer.Context,
    tool_id: str = typer.Argument(help="Tool id (web_search, web_reader, zread, vision)."),
    on: bool = typer.Option(..., "--on/--off", help="Enable or disable the tool."),
) -> None:
    """Enable or disable one tool."""
    from keyrelay.mcp.catalog import tool_ids, tools_for

    known = tool_ids()
    if tool_id not in known:
        raise fail(f"Unknown tool '{tool_id}'. Known: {', '.join(known)}")

    enabled = [t.id for t in tools_for(effective_settings(ctx).mcp) if t.enabled]
    if on and tool_id not in enabled:
        enabled.append(tool_id)
    elif not on and tool_id in enabled:
        enabled.remove(tool_id)
    ordered = [t for t in known if t in enabled]
    _save_and_apply(ctx, enabled_tools=ordered)
    success(f"{tool_id} {'enabled' if on else 'disabled'}.")
    if not ordered:
        warning("No tools are enabled.")


@mcp_app.command("test")
def mcp_test(ctx: typer.Context) -> None:
    """Probe every enabled tool and report the aggregate result.

    Refuses to run while the integration is disabled.
    """
    if not effective_settings(ctx).mcp.enabled:
        exit_error = fail("MCP integration is not enabled.", code=EXIT_CONFIG_ERROR)
        suggest("Enable it with: keyrelay mcp enable")
        raise exit_error

    async def _run(services: Services) -> ConnectionTestReport:
        return await services.health.test_connection()

    report = run_with_services(ctx, _run)
    rows = [
        [r.tool_id, "ok" if r.success else "failed", r.message] for r in report.results
    ]
    print_table(
        ["Tool", "Result", "Message"],
        rows,
        title="MCP connection test",
        records=[r.model_dump(mode="json") for r in report.results],
    )
    if report.success:
        success(report.message)
    elif report.failed_tools and len(report.failed_tools) < len(report.results):
        warning(report.message)
    else:
        raise fail(report.message, code=EXIT_CONNECTION_ERROR)


@mcp_app.command("apply")
def mcp_apply(ctx: typer.Context) -> None:
    """Write the server block for the saved settings."""

    async def _run(services: Services) -> None:
        await services.sync.apply(services.tool_settings_path)
        info(f"Settings file: {services.tool_settings_path}")

    run_with_services(ctx, _run)
    success("MCP configuration applied.")


@mcp_app.command("remove")
def mcp_remove(ctx: typer.Context) -> None:
    """Strip keyrelay's server entries from the settings file."""

    async def _run(services: Services) -> Optional[dict]:
        return await services.sync.remove(services.tool_settings_path)

    if run_with_services(ctx, _run) is None:
        info("Settings file does not exist; nothing to remove.")
    else:
        success("MCP configuration removed.")


@mcp_app.command("set-key")
def mcp_set_key(
    key: Optional[str] = typer.Argument(None, help="Upstream API key (prompted when omitted)."),
) -> None:
    """Store the upstream MCP API key in keyrelay's secret store."""
    from keyrelay.secrets import SecretEntry, SecretStore

    if key is None:
        key = typer.prompt("API key", hide_input=True)
    key = key.strip()
    if not key:
        raise fail("API key must not be empty.")
    store = SecretStore("mcp")
    store.save(SecretEntry(value=key))
    success(f"API key saved to {store.path}")
    suggest("Re-apply with: keyrelay mcp apply")
