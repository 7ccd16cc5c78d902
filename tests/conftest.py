"""Shared test fixtures for keyrelay.

Provides isolated config/home directories, output state management, a CLI
runner, and small builders for auth files and settings.
These fixtures are discovered by pytest and available to every test module
without explicit imports.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

import pytest

from keyrelay.models import AppSettings
from keyrelay.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches sys.stdout/sys.stderr when it is created. The
    CliRunner swaps those streams per invocation, so a cached manager would
    write to a closed file in the next test. The same holds for the stderr
    log handler installed by the root callback.
    """
    yield
    reset_output()

    from keyrelay import app as app_module

    package_logger = logging.getLogger("keyrelay")
    if app_module._log_handler is not None:
        package_logger.removeHandler(app_module._log_handler)
        app_module._log_handler = None
    package_logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration, data and $HOME under tmp_path.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    points HOME at ``tmp_path / "home"`` (so the default auth directory and
    tool settings file are disposable), and clears every KEYRELAY_*
    environment variable.

    Returns:
        The tmp_path root directory.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("keyrelay.config._is_xdg_platform", lambda: True)

    for var in [
        "KEYRELAY_PROXY_PORT",
        "KEYRELAY_AUTH_DIR",
        "KEYRELAY_SETTINGS_PATH",
        "KEYRELAY_MANAGEMENT_KEY",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner with the command groups registered."""
    from typer.testing import CliRunner

    from keyrelay.app import register_commands

    register_commands()
    return CliRunner()


# ---------------------------------------------------------------------------
# Auth directory and settings fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_dir(tmp_path: Path) -> Path:
    """An empty auth directory."""
    path = tmp_path / "auth"
    path.mkdir()
    return path


@pytest.fixture
def write_auth_file(auth_dir: Path) -> Callable[..., Path]:
    """Return a helper that writes ``auth_dir/<name>`` with JSON *content*."""

    def _write(name: str, content: Any = None, subdir: str | None = None) -> Path:
        directory = auth_dir / subdir if subdir else auth_dir
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        if content is None:
            content = {"email": "user@example.com", "access_token": "tok"}
        path.write_text(json.dumps(content), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def settings_for(auth_dir: Path, tmp_path: Path) -> Callable[..., AppSettings]:
    """Return a builder for AppSettings pointing at the test directories."""

    def _build(**mcp: Any) -> AppSettings:
        settings = AppSettings()
        settings.proxy.auth_dir = str(auth_dir)
        settings.mcp.settings_path = str(tmp_path / "tool" / "settings.json")
        for key, value in mcp.items():
            setattr(settings.mcp, key, value)
        return settings

    return _build
