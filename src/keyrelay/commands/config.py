"""Config commands -- view and modify keyrelay's settings file.

Provides the ``keyrelay config`` sub-command group for reading, updating
and resetting :class:`~keyrelay.models.AppSettings`, stored in the keyrelay
config directory.
"""

from __future__ import annotations

from typing import Any

import typer

from keyrelay.commands import fail
from keyrelay.output import info, print_document, success

config_app = typer.Typer(no_args_is_help=True)

_NULL_WORDS = ("null", "none", "")
_LIST_KEYS = ("mcp.enabled_tools",)


def _coerce(key: str, current: Any, value: str) -> Any:
    """Convert *value* to the type of the field's *current* value."""
    if value.lower() in _NULL_WORDS and (current is None or key in _LIST_KEYS):
        return None
    if key in _LIST_KEYS or isinstance(current, list):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes", "on")
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            raise fail(f"Expected integer for {key}, got: {value}") from None
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError:
            raise fail(f"Expected number for {key}, got: {value}") from None
    return value


@config_app.command("show")
def config_show() -> None:
    """Show the saved settings.

    Example::

        keyrelay config show
        keyrelay --json config show
    """
    from keyrelay.config import get_config_dir, load_settings

    settings = load_settings()
    info(f"Config directory: {get_config_dir()}")
    print_document(settings.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Dot-separated key, e.g. 'proxy.port'."),
    value: str = typer.Argument(help="Value to set. Lists are comma separated."),
) -> None:
    """Set a settings value.

    The value is coerced to the field's current type and the result is
    validated before it is saved. ``null`` clears optional fields.

    Example::

        keyrelay config set proxy.port 8417
        keyrelay config set mcp.enabled_tools web_search,zread
        keyrelay config set proxy.auth_dir null
    """
    from pydantic import ValidationError

    from keyrelay.config import load_settings, save_settings
    from keyrelay.models import AppSettings

    data = load_settings().model_dump(mode="json")

    keys = key.split(".")
    target = data
    for part in keys[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise fail(f"Invalid config key: {key}")
        target = target[part]

    final_key = keys[-1]
    if final_key not in target:
        raise fail(f"Unknown config key: {key}")

    coerced = _coerce(key, target[final_key], value)
    target[final_key] = coerced

    try:
        settings = AppSettings.model_validate(data)
    except ValidationError as exc:
        raise fail(f"Validation error: {exc}") from None

    save_settings(settings)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Reset all settings to their defaults."""
    from keyrelay.config import save_settings
    from keyrelay.models import AppSettings

    if not yes and not typer.confirm("Reset all settings to defaults?"):
        info("Cancelled.")
        raise typer.Exit()

    save_settings(AppSettings())
    success("Settings reset to defaults.")
