"""Direct on-disk view of the proxy's auth directory.

The proxy stores one JSON credential file per account in its auth directory
(``~/.cli-proxy-api`` by default), plus a few provider subdirectories. When
the proxy is not running, or its management API gives an ambiguous answer,
:class:`DirectScanProvider` reads those files itself.

Conventions shared with the proxy:

* A file whose name starts with ``.`` is disabled. Toggling an account
  renames the file rather than editing it.
* A file may also carry ``"disabled": true`` in its body; enabling the
  account removes that marker.
* Records found in a provider subdirectory take the subdirectory's name as
  their provider; top-level files are classified by filename prefix.

Every mutation checks that the target lies inside the auth directory and
raises :class:`~keyrelay.exceptions.FileSystemError` otherwise.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from keyrelay.client.management import parse_timestamp
from keyrelay.config import atomic_write
from keyrelay.exceptions import FileSystemError, InvalidUsageError, NotFoundError
from keyrelay.models import AccountRecord, AccountStatus

logger = logging.getLogger(__name__)

PROVIDER_SUBDIRS = ("gemini-cli", "cursor", "trae", "kiro", "copilot", "github-copilot")

# (filename prefixes, substrings, provider); checked in order, first match wins.
_FILENAME_PROVIDERS: tuple[tuple[tuple[str, ...], tuple[str, ...], str], ...] = (
    (("gemini",), ("gemini",), "gemini-cli"),
    (("claude",), ("anthropic",), "claude"),
    (("codex",), ("openai",), "codex"),
    (("qwen",), (), "qwen"),
    (("cursor",), (), "cursor"),
    (("github-copilot", "copilot"), (), "github-copilot"),
    (("trae",), (), "trae"),
    (("iflow",), (), "iflow"),
    (("antigravity",), (), "antigravity"),
    (("kiro",), (), "kiro"),
    (("warp",), (), "warp"),
    (("glm",), (), "glm"),
)

_TOKEN_KEYS = ("access_token", "accessToken", "token", "refresh_token", "refreshToken")


def record_id_for(path: Path) -> str:
    """Stable id for a file-backed record.

    The id is derived from the enabled form of the path, so a record keeps
    its id across enable/disable renames.
    """
    enabled = path.with_name(path.name.lstrip("."))
    return hashlib.md5(str(enabled).encode("utf-8")).hexdigest()


def provider_from_filename(filename: str, content: dict[str, Any]) -> str:
    """Classify a top-level auth file by its name, then by its content."""
    name = filename.lstrip(".").lower()
    for prefixes, substrings, provider in _FILENAME_PROVIDERS:
        if name.startswith(prefixes) or any(s in name for s in substrings):
            return provider
    declared = content.get("provider") or content.get("type")
    if isinstance(declared, str) and declared:
        return declared
    if "access_token" in content or "accessToken" in content:
        return "claude"
    if "refresh_token" in content:
        return "gemini-cli"
    return "unknown"


def _first_str(content: dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = content.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def parse_auth_file(path: Path, content: dict[str, Any], provider: Optional[str] = None) -> AccountRecord:
    """Build an :class:`AccountRecord` from a parsed auth file.

    Args:
        path: Location of the file on disk.
        content: The file's decoded JSON object.
        provider: Provider override (used for subdirectory files).
    """
    filename = path.name
    email = _first_str(content, "email", "user_email", "account")
    has_token = any(key in content for key in _TOKEN_KEYS)
    disabled = filename.startswith(".") or content.get("disabled") is True
    return AccountRecord(
        id=record_id_for(path),
        name=filename.lstrip("."),
        provider=provider or provider_from_filename(filename, content),
        label=email,
        status=AccountStatus.READY if has_token else AccountStatus.ERROR,
        status_message=None if has_token else "No token found in auth file",
        disabled=disabled,
        source_path=path,
        source="file",
        email=email,
        account_type=_first_str(content, "account_type", "accountType", "type"),
        created_at=parse_timestamp(content.get("created_at")),
        last_refresh=parse_timestamp(content.get("last_refresh")),
    )


class DirectScanProvider:
    """Read and mutate auth files directly on disk.

    All methods are blocking; async callers run them through
    :func:`asyncio.to_thread`.

    Args:
        auth_dir: The proxy's auth directory.
    """

    def __init__(self, auth_dir: Path) -> None:
        self._auth_dir = Path(auth_dir).expanduser()

    @property
    def auth_dir(self) -> Path:
        return self._auth_dir

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #

    def scan(self) -> list[AccountRecord]:
        """Return one record per parsable ``*.json`` file.

        A missing auth directory yields an empty list. Unreadable or
        malformed files are skipped with a debug log entry.
        """
        if not self._auth_dir.is_dir():
            return []

        records = self._scan_dir(self._auth_dir, provider=None)
        for subdir in PROVIDER_SUBDIRS:
            path = self._auth_dir / subdir
            if path.is_dir():
                records.extend(self._scan_dir(path, provider=subdir))
        return records

    def _scan_dir(self, directory: Path, provider: Optional[str]) -> list[AccountRecord]:
        records: list[AccountRecord] = []
        for path in sorted(directory.iterdir()):
            if path.is_dir() or path.suffix != ".json":
                continue
            try:
                content = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.debug("Skipping unreadable auth file %s: %s", path, exc)
                continue
            if not isinstance(content, dict):
                logger.debug("Skipping auth file %s: not a JSON object", path)
                continue
            records.append(parse_auth_file(path, content, provider=provider))
        return records

    # ------------------------------------------------------------------ #
    # Write
    # ------------------------------------------------------------------ #

    def create(self, provider: str, email: str, token: str) -> AccountRecord:
        """Write a new auth file for a pasted token.

        The file is named ``{provider}-{email}.json`` with ``@`` replaced by
        ``_at_`` and ``.`` by ``_`` in the email part.

        Raises:
            InvalidUsageError: If any argument is empty.
            FileSystemError: If the file cannot be written.
        """
        if not provider or not email or not token:
            raise InvalidUsageError("provider, email and token are all required")
        safe_email = email.replace("@", "_at_").replace(".", "_")
        path = self._auth_dir / f"{provider}-{safe_email}.json"
        content = {
            "provider": provider,
            "email": email,
            "access_token": token,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            atomic_write(path, json.dumps(content, indent=2) + "\n", mode=0o600)
        except OSError as exc:
            raise FileSystemError(f"Cannot write auth file {path}: {exc}") from exc
        logger.debug("Created auth file %s", path)
        return parse_auth_file(path, content, provider=provider)

    def toggle(self, path: Path, disabled: bool) -> Path:
        """Enable or disable the file at *path* by renaming it.

        Enabling also clears a ``"disabled": true`` marker in the file body.

        Returns:
            The file's new path (unchanged when already in the wanted state).

        Raises:
            FileSystemError: If *path* is outside the auth directory or the
                rename fails.
            NotFoundError: If the file does not exist.
        """
        path = self._checked(path)
        if not path.exists():
            raise NotFoundError(f"Auth file not found: {path}")

        bare = path.name.lstrip(".")
        new_path = path.with_name(f".{bare}" if disabled else bare)
        if new_path != path:
            try:
                path.rename(new_path)
            except OSError as exc:
                raise FileSystemError(f"Cannot rename {path}: {exc}") from exc
        if not disabled:
            self._clear_disabled_marker(new_path)
        return new_path

    def _clear_disabled_marker(self, path: Path) -> None:
        try:
            content = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.debug("Not clearing disabled marker in unreadable %s: %s", path, exc)
            return
        if not isinstance(content, dict) or content.get("disabled") is not True:
            return
        del content["disabled"]
        try:
            atomic_write(path, json.dumps(content, indent=2) + "\n", mode=0o600)
        except OSError as exc:
            raise FileSystemError(f"Cannot rewrite {path}: {exc}") from exc
        logger.debug("Cleared disabled marker in %s", path)

    def delete(self, path: Path) -> None:
        """Delete the file at *path*. A missing file is not an error.

        Raises:
            FileSystemError: If *path* is outside the auth directory or the
                file cannot be removed.
        """
        path = self._checked(path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise FileSystemError(f"Cannot delete {path}: {exc}") from exc

    def _checked(self, path: Path) -> Path:
        path = Path(path).expanduser()
        root = self._auth_dir.resolve()
        resolved = path.resolve()
        if resolved == root or root not in resolved.parents:
            raise FileSystemError(f"Refusing to modify {path}: outside auth directory {root}")
        return path
