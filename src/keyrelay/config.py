"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for keyrelay:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.keyrelay/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Settings** -- A single :class:`~keyrelay.models.AppSettings` JSON file
  (proxy location, OAuth polling bounds, MCP integration).
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  environment variables, and the settings file into the effective settings.
* **Well-known paths** -- the proxy's auth directory and the external tool's
  settings file, see :func:`get_auth_dir` and :func:`get_tool_settings_path`.
* **Secret resolution** -- :func:`resolve_secret` reads secrets from env
  vars, files, literals, or the local :class:`~keyrelay.secrets.SecretStore`.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so that a crash never leaves a half-written file
behind, including in files keyrelay shares with other programs.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from keyrelay.exceptions import ConfigurationError
from keyrelay.models import AppSettings

_APP_NAME = "keyrelay"
_CONFIG_FILENAME = "config.json"
_DEFAULT_AUTH_DIRNAME = ".cli-proxy-api"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows XDG Base Directory conventions (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/keyrelay/`` (default ``~/.config/keyrelay/``).
    On macOS/Windows: ``~/.keyrelay/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (secrets, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/keyrelay/`` (default ``~/.local/share/keyrelay/``).
    On macOS/Windows: ``~/.keyrelay/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. Parent directories
    are created when missing. On any failure the temp file is removed and the
    original file is left untouched.

    Args:
        path: Destination file.
        data: Full text content to write.
        mode: Optional permission bits applied to the temp file before any
            content is written (e.g. ``0o600`` for secrets).
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings ---


def _settings_path() -> Path:
    """Path to the settings file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> AppSettings:
    """Load the settings from the XDG config directory.

    Returns:
        The deserialised :class:`~keyrelay.models.AppSettings`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigurationError: If the file exists but contains invalid JSON or
            fails Pydantic validation.
    """
    path = _settings_path()
    if not path.is_file():
        return AppSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return AppSettings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid settings at {path}: {exc}") from exc


def save_settings(settings: AppSettings) -> None:
    """Persist the settings atomically to disk."""
    data = settings.model_dump(mode="json")
    atomic_write(_settings_path(), json.dumps(data, indent=2) + "\n")


def resolve_settings(
    cli_port: Optional[int] = None,
    cli_settings_path: Optional[str] = None,
) -> AppSettings:
    """Resolve settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_port``, ``cli_settings_path``)
        2. Environment variables (``KEYRELAY_PROXY_PORT``,
           ``KEYRELAY_AUTH_DIR``, ``KEYRELAY_SETTINGS_PATH``)
        3. Settings file (``~/.config/keyrelay/config.json``)
        4. Defaults

    Raises:
        ConfigurationError: If an environment override is malformed.
    """
    settings = load_settings()

    env_port = os.environ.get("KEYRELAY_PROXY_PORT")
    if env_port:
        try:
            settings.proxy.port = int(env_port)
        except ValueError:
            raise ConfigurationError(
                f"KEYRELAY_PROXY_PORT must be an integer, got: {env_port}"
            ) from None
    env_auth_dir = os.environ.get("KEYRELAY_AUTH_DIR")
    if env_auth_dir:
        settings.proxy.auth_dir = env_auth_dir
    env_settings_path = os.environ.get("KEYRELAY_SETTINGS_PATH")
    if env_settings_path:
        settings.mcp.settings_path = env_settings_path

    if cli_port is not None:
        settings.proxy.port = cli_port
    if cli_settings_path is not None:
        settings.mcp.settings_path = cli_settings_path

    return settings


# --- Well-known external paths ---


def get_auth_dir(settings: AppSettings) -> Path:
    """Return the proxy's auth file directory (not created here)."""
    if settings.proxy.auth_dir:
        return Path(settings.proxy.auth_dir).expanduser()
    return Path.home() / _DEFAULT_AUTH_DIRNAME


def get_tool_settings_path(settings: AppSettings) -> Path:
    """Return the external CLI tool's settings file (default ``~/.claude/settings.json``)."""
    if settings.mcp.settings_path:
        return Path(settings.mcp.settings_path).expanduser()
    return Path.home() / ".claude" / "settings.json"


# --- Secret source resolution ---


def resolve_secret(source: str, required: bool = True) -> str:
    """Resolve a secret from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"store:NAME"`` -- reads the named entry from the local secret store
        - ``"value:LITERAL"`` -- the literal text after the prefix

    Args:
        source: The source descriptor string.
        required: When ``False``, an unset env var or empty store entry
            resolves to ``""`` instead of raising.

    Returns:
        The resolved secret string.

    Raises:
        ConfigurationError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            if not required:
                return ""
            raise ConfigurationError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            if not required:
                return ""
            raise ConfigurationError(f"Secret file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigurationError(f"Cannot read secret file {path}: {exc}") from exc

    if source.startswith("store:"):
        from keyrelay.secrets import SecretStore

        entry = SecretStore(source[6:]).load()
        if entry is None or not entry.value:
            if not required:
                return ""
            raise ConfigurationError(f"No secret stored under '{source[6:]}' (source: {source})")
        return entry.value

    if source.startswith("value:"):
        return source[6:]

    raise ConfigurationError(f"Unknown secret source format: {source}")
