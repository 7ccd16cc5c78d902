"""Persistent named secret store.

Stores secrets in ``~/.local/share/keyrelay/secrets/<name>.json`` (XDG) or
the platform-equivalent directory. Files are written atomically through
:func:`~keyrelay.config.atomic_write` with ``0o600`` permissions so that
secrets are never world-readable, even momentarily.

The store backs the ``store:NAME`` secret source understood by
:func:`~keyrelay.config.resolve_secret`; the MCP upstream API key is kept
under ``store:mcp`` by default and set with ``keyrelay mcp set-key``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from keyrelay.config import atomic_write, get_data_dir


class SecretEntry(BaseModel):
    """A single stored secret.

    Attributes:
        value: The secret text.
        updated_at: When the secret was last written (UTC).
    """

    value: str = Field(description="The secret value")
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _secrets_dir() -> Path:
    """Return the secrets directory, creating it if needed."""
    path = get_data_dir() / "secrets"
    path.mkdir(parents=True, exist_ok=True)
    return path


class SecretStore:
    """Read/write one named secret.

    Example::

        store = SecretStore("mcp")
        store.save(SecretEntry(value="sk-123"))
        assert store.load().value == "sk-123"
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._path = _secrets_dir() / f"{name}.json"

    @property
    def path(self) -> Path:
        """The filesystem path to this secret's file."""
        return self._path

    def save(self, entry: SecretEntry) -> None:
        """Persist a secret atomically with ``0o600`` permissions.

        Raises:
            OSError: If the file cannot be written.
        """
        text = json.dumps(entry.model_dump(mode="json"), indent=2) + "\n"
        atomic_write(self._path, text, mode=0o600)

    def load(self) -> Optional[SecretEntry]:
        """Load the stored secret, or ``None`` if missing or unreadable."""
        if not self._path.is_file():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return SecretEntry.model_validate(data)
        except (json.JSONDecodeError, ValueError, OSError):
            return None

    def clear(self) -> None:
        """Delete the stored secret. No-op when already absent."""
        if self._path.is_file():
            self._path.unlink()
