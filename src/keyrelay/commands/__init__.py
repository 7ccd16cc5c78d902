"""Built-in CLI command groups for keyrelay.

Each sub-module defines a Typer sub-application or command function that is
registered on the root app in :func:`keyrelay.app.register_commands`.

The helpers here give every command the same shape: resolve the effective
settings from the Typer context, build :class:`~keyrelay.runtime.Services`,
run one coroutine, and turn :class:`~keyrelay.exceptions.KeyrelayError`
into an error message plus the error's exit code.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import typer

from keyrelay.models import AppSettings

T = TypeVar("T")


def effective_settings(ctx: typer.Context) -> AppSettings:
    """Settings after applying CLI overrides stored by the root callback."""
    from keyrelay.config import resolve_settings

    obj = ctx.obj or {}
    return resolve_settings(
        cli_port=obj.get("port"),
        cli_settings_path=obj.get("settings_path"),
    )


def run_with_services(
    ctx: typer.Context,
    func: Callable[..., Awaitable[T]],
    start: bool = False,
) -> T:
    """Run ``func(services)`` on a fresh event loop.

    Args:
        ctx: Typer context carrying the global overrides.
        func: Coroutine function receiving the :class:`Services`.
        start: Also start background listeners (OAuth success refresh,
            health monitor) for the duration of the call.

    Raises:
        typer.Exit: With the error's exit code on any ``KeyrelayError``.
    """
    from keyrelay.exceptions import KeyrelayError
    from keyrelay.output import error
    from keyrelay.runtime import Services

    factory = ctx.obj.get("services_factory") if ctx.obj else None

    async def _main() -> T:
        settings = effective_settings(ctx)
        services = factory(settings) if factory else Services.from_settings(settings)
        if start:
            services.start()
        try:
            return await func(services)
        finally:
            await services.aclose()

    try:
        return asyncio.run(_main())
    except KeyrelayError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def fail(message: str, code: int = 2) -> typer.Exit:
    """Print *message* as an error and return the matching ``typer.Exit``."""
    from keyrelay.output import error

    error(message)
    return typer.Exit(code=code)
