"""Inject the MCP server block into an externally owned settings file.

The settings file (``~/.claude/settings.json`` by default) belongs to another
program. keyrelay owns only the entries of its ``mcpServers`` object whose
keys start with the owner prefix (``keyrelay-``); every other key in the
document, and every foreign server entry, survives each read-modify-write
cycle untouched.

Output is written atomically with sorted keys, two-space indentation and a
trailing newline, so applying the same configuration twice produces a
byte-identical file.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from keyrelay.config import atomic_write
from keyrelay.exceptions import ConfigurationError, FileSystemError
from keyrelay.mcp.catalog import enabled_tools, endpoint_url, tools_for
from keyrelay.models import ConfigMode, MCPSettings, ServerType, ToolConfig

logger = logging.getLogger(__name__)

SERVERS_KEY = "mcpServers"


def generate_block(
    tools: Iterable[ToolConfig],
    mode: ConfigMode,
    secret: str,
    relay_base_url: str,
    prefix: str = "keyrelay-",
) -> dict[str, dict[str, Any]]:
    """Build the owner-prefixed server entries for the enabled *tools*.

    Raises:
        ConfigurationError: In direct mode when *secret* is empty and at
            least one tool is enabled.
    """
    selected = enabled_tools(tools)
    if mode == ConfigMode.DIRECT and selected and not secret:
        raise ConfigurationError(
            "An API key is required in direct mode (set one with 'keyrelay mcp set-key')"
        )

    block: dict[str, dict[str, Any]] = {}
    for tool in selected:
        if mode == ConfigMode.PROXY:
            entry: dict[str, Any] = {
                "type": "http",
                "url": endpoint_url(tool, mode, relay_base_url),
            }
        elif tool.server_type == ServerType.STDIO:
            env = dict(tool.extra_env)
            if tool.secret_env:
                env[tool.secret_env] = secret
            entry = {
                "type": "stdio",
                "command": tool.command or "",
                "args": list(tool.args),
                "env": env,
            }
        else:
            entry = {
                "type": "http",
                "url": tool.full_url,
                "headers": {"Authorization": f"Bearer {secret}"},
            }
        block[f"{prefix}{tool.id}"] = entry
    return block


def merge_block(
    document: dict[str, Any], block: dict[str, dict[str, Any]], prefix: str
) -> dict[str, Any]:
    """Return a copy of *document* with its owned entries replaced by *block*.

    An empty *block* only strips owned entries. ``mcpServers`` is dropped
    when nothing is left in it.

    Raises:
        ConfigurationError: If ``mcpServers`` exists but is not an object.
    """
    result = dict(document)
    servers = result.get(SERVERS_KEY, {})
    if not isinstance(servers, dict):
        raise ConfigurationError(f"'{SERVERS_KEY}' is not a JSON object; refusing to modify it")

    merged = {key: value for key, value in servers.items() if not key.startswith(prefix)}
    merged.update(block)
    if merged:
        result[SERVERS_KEY] = merged
    else:
        result.pop(SERVERS_KEY, None)
    return result


def _read_document(path: Path) -> Optional[dict[str, Any]]:
    """Read *path* as a JSON object; ``None`` when missing, ``{}`` when unusable."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Cannot parse %s, starting from an empty document: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("%s does not hold a JSON object, starting from an empty document", path)
        return {}
    return data


def _dump(document: dict[str, Any]) -> str:
    return json.dumps(document, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


class ConfigSynchronizer:
    """Apply or remove keyrelay's MCP block in a settings file.

    Writes to the same path are serialized by a per-path lock; the file I/O
    itself runs in a worker thread.

    Args:
        settings: MCP settings; reassign :attr:`settings` to change them.
        secret: Returns the upstream API key. Only called in direct mode.
    """

    def __init__(self, settings: MCPSettings, secret: Callable[[], str]) -> None:
        self.settings = settings
        self._secret = secret
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, path: Path) -> asyncio.Lock:
        key = str(path.expanduser().resolve())
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def build_block(self) -> dict[str, dict[str, Any]]:
        """The block the current settings call for (empty when disabled)."""
        settings = self.settings
        tools = tools_for(settings)
        if not settings.enabled or not enabled_tools(tools):
            return {}
        secret = self._secret() if settings.mode == ConfigMode.DIRECT else ""
        return generate_block(
            tools, settings.mode, secret, settings.relay_base_url, settings.owner_prefix
        )

    async def apply(self, settings_path: Path) -> Optional[dict[str, Any]]:
        """Write the current block into *settings_path*.

        Creates the file and its parent directories when missing and there
        is something to write. With the integration disabled this only strips
        keyrelay's entries from an existing file.

        Returns:
            The document as written, or ``None`` when the file is missing and
            the block is empty.
        """
        block = self.build_block()
        async with self._lock_for(settings_path):
            return await asyncio.to_thread(
                self._rewrite, Path(settings_path), block, bool(block)
            )

    async def remove(self, settings_path: Path) -> Optional[dict[str, Any]]:
        """Strip keyrelay's entries from *settings_path*. No-op when missing."""
        async with self._lock_for(settings_path):
            return await asyncio.to_thread(self._rewrite, Path(settings_path), {}, False)

    def _rewrite(
        self, path: Path, block: dict[str, dict[str, Any]], create: bool
    ) -> Optional[dict[str, Any]]:
        path = path.expanduser()
        current = _read_document(path)
        if current is None and not create:
            logger.debug("%s does not exist, nothing to remove", path)
            return None

        updated = merge_block(current or {}, block, self.settings.owner_prefix)
        text = _dump(updated)
        try:
            if path.exists() and path.read_text(encoding="utf-8") == text:
                return updated
            atomic_write(path, text)
        except OSError as exc:
            raise FileSystemError(f"Cannot write {path}: {exc}") from exc
        logger.info("Updated MCP servers in %s (%d owned)", path, len(block))
        return updated
