"""Typer application and CLI entry point for keyrelay.

The root callback installs the :class:`~keyrelay.output.OutputManager`,
configures :mod:`logging` for the library modules, and records global
overrides (``--port``, ``--settings-path``) in the Typer context.

:func:`main` is the ``keyrelay`` console script. It registers the command
groups, invokes the app, maps :class:`~keyrelay.exceptions.KeyrelayError` to
its exit code, and writes a crash log for anything unexpected.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from keyrelay import __version__
from keyrelay.exit_codes import EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="keyrelay",
    help="Manage local AI proxy accounts and sync MCP servers into your CLI tool.",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"keyrelay {__version__}")
        raise typer.Exit()


_log_handler: Optional[logging.Handler] = None


def _configure_logging(verbose: bool) -> None:
    """Send library log records to stderr; DEBUG with ``--verbose``."""
    global _log_handler
    package_logger = logging.getLogger("keyrelay")
    if _log_handler is not None:
        package_logger.removeHandler(_log_handler)
    # Bound to the current sys.stderr, which test runners replace per invocation.
    _log_handler = logging.StreamHandler(sys.stderr)
    _log_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    package_logger.addHandler(_log_handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    port: Optional[int] = typer.Option(
        None, "--port", help="Proxy port (overrides config and KEYRELAY_PROXY_PORT)."
    ),
    settings_path: Optional[str] = typer.Option(
        None, "--settings-path", help="External tool settings file to sync MCP servers into."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every sub-command."""
    from keyrelay.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["port"] = port
    ctx.obj["settings_path"] = settings_path
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback under the data dir and return its path."""
    from keyrelay.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def register_commands() -> None:
    """Attach the command groups to :data:`app`. Idempotent."""
    if getattr(app, "_keyrelay_registered", False):
        return
    from keyrelay.commands.accounts import accounts_app
    from keyrelay.commands.config import config_app
    from keyrelay.commands.keys import keys_app
    from keyrelay.commands.login import login_command
    from keyrelay.commands.mcp import mcp_app

    app.add_typer(accounts_app, name="accounts", help="List and manage credential accounts.")
    app.add_typer(keys_app, name="keys", help="Manage the proxy's client API keys.")
    app.command("login")(login_command)
    app.add_typer(mcp_app, name="mcp", help="MCP server integration.")
    app.add_typer(config_app, name="config", help="Configuration management.")
    app._keyrelay_registered = True  # type: ignore[attr-defined]


def main() -> None:
    """Console-script entry point.

    :class:`~keyrelay.exceptions.KeyrelayError` exits with its
    ``exit_code``; any other exception produces a crash log and exit 1.
    """
    _setup_signal_handlers()
    try:
        register_commands()
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from keyrelay.exceptions import KeyrelayError
        from keyrelay.output import error

        if isinstance(exc, KeyrelayError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
