"""Merged account list over the management API and the direct disk scan.

:class:`CredentialStore` decides, for every read, which source is
authoritative:

1. If the proxy does not answer its liveness check, the direct scan is used.
2. If the proxy answers and lists at least one auth file, that list is
   authoritative. Disabled (dot-renamed) files that only exist on disk are
   appended so they can still be re-enabled while the proxy runs.
3. If the proxy answers with an empty list, or the read fails, the answer
   is ambiguous (the proxy may still be loading) and the direct scan is
   used instead. An empty API answer is never cached.

Mutations are routed by record: file-backed records (those with a
``source_path``) are changed on disk even while the proxy is reachable,
everything else goes through the management API by name. A failure in the
owning channel propagates; there is no cross-channel retry for writes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

import httpx

from keyrelay.accounts.direct import DirectScanProvider
from keyrelay.client.management import ManagementAPIClient
from keyrelay.events import Observable
from keyrelay.exceptions import KeyrelayError, NotFoundError
from keyrelay.models import AccountRecord

logger = logging.getLogger(__name__)


def _path_key(path: Optional[Path]) -> Optional[str]:
    if path is None:
        return None
    path = Path(path)
    return str(path.with_name(path.name.lstrip(".")))


def merge_sources(
    primary: Iterable[AccountRecord], secondary: Iterable[AccountRecord]
) -> list[AccountRecord]:
    """Merge two record lists, preferring *primary* for logical duplicates.

    A *secondary* record is a duplicate when it shares a backing file
    (ignoring the disabled dot prefix) or the ``(provider, label)`` key with
    a record already in the result, or reuses an id. Order is *primary*
    first, then the surviving *secondary* records in their original order.
    Merging the result with the same *secondary* again is a no-op.
    """
    merged: list[AccountRecord] = []
    ids: set[str] = set()
    paths: set[str] = set()
    keys: set[tuple[str, str]] = set()

    def _seen(record: AccountRecord) -> bool:
        path_key = _path_key(record.source_path)
        return (
            record.id in ids
            or (path_key is not None and path_key in paths)
            or record.merge_key in keys
        )

    def _add(record: AccountRecord) -> None:
        merged.append(record)
        ids.add(record.id)
        path_key = _path_key(record.source_path)
        if path_key is not None:
            paths.add(path_key)
        keys.add(record.merge_key)

    for record in primary:
        _add(record)
    for record in secondary:
        if not _seen(record):
            _add(record)
    return merged


class CredentialStore:
    """Account list with source fallback, a short cache and routed mutations.

    The latest list is published through :attr:`accounts`; every successful
    read replaces it atomically.

    Args:
        client: Management API client.
        direct: Direct disk scanner for the same auth directory.
        cache_ttl: Seconds an authoritative API answer is reused.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        client: ManagementAPIClient,
        direct: DirectScanProvider,
        cache_ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._direct = direct
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._cached_at: Optional[float] = None
        self._inflight: Optional[asyncio.Task[list[AccountRecord]]] = None
        self._fetch_seq = 0
        self.accounts: Observable[list[AccountRecord]] = Observable([])

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #

    async def get_accounts(self, force_refresh: bool = False) -> list[AccountRecord]:
        """Return the merged account list.

        Without *force_refresh* a fresh cached answer is reused and
        concurrent callers share one in-flight fetch. With it, a new fetch
        is started; callers arriving afterwards join that fetch. Only the
        most recently started fetch publishes its result and fills the cache.

        Never raises for source failures; the direct scan is the last resort.
        """
        if not force_refresh:
            if self._cache_is_fresh():
                return list(self.accounts.value)
            if self._inflight is not None and not self._inflight.done():
                return list(await asyncio.shield(self._inflight))

        self._fetch_seq += 1
        task = asyncio.get_running_loop().create_task(self._fetch(self._fetch_seq))
        self._inflight = task
        task.add_done_callback(self._clear_inflight)
        return list(await asyncio.shield(task))

    def invalidate(self) -> None:
        """Drop the cached answer so the next read goes to the sources.

        A fetch already in flight is superseded: its result is still returned
        to its callers but is neither published nor cached.
        """
        self._cached_at = None
        self._fetch_seq += 1
        self._inflight = None

    def _cache_is_fresh(self) -> bool:
        if self._cached_at is None:
            return False
        return self._clock() - self._cached_at < self._cache_ttl

    def _clear_inflight(self, task: asyncio.Task[list[AccountRecord]]) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _fetch(self, seq: int) -> list[AccountRecord]:
        if await self._client.is_running():
            try:
                api_records = await self._client.list_auth_files()
            except (KeyrelayError, httpx.HTTPError) as exc:
                logger.warning("Management API read failed, using direct scan: %s", exc)
                api_records = []
            if api_records:
                on_disk = await self._scan()
                records = merge_sources(api_records, [r for r in on_disk if r.disabled])
                self._publish(seq, records, cache=True)
                return records
            logger.info("Management API listed no accounts, using direct scan")
        else:
            logger.debug("Proxy not reachable, using direct scan")

        records = await self._scan()
        self._publish(seq, records, cache=False)
        return records

    def _publish(self, seq: int, records: list[AccountRecord], cache: bool) -> None:
        if seq != self._fetch_seq:
            logger.debug("Discarding superseded account fetch %d", seq)
            return
        self._cached_at = self._clock() if cache else None
        self.accounts.set(records)

    async def _scan(self) -> list[AccountRecord]:
        try:
            return await asyncio.to_thread(self._direct.scan)
        except OSError as exc:
            logger.warning("Cannot scan auth directory %s: %s", self._direct.auth_dir, exc)
            return []

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    async def find(self, account_id: str) -> AccountRecord:
        """Look up a record by id, refreshing once when it is unknown.

        Raises:
            NotFoundError: If no record has that id (or name).
        """
        record = self._lookup(self.accounts.value, account_id)
        if record is None:
            record = self._lookup(await self.get_accounts(force_refresh=True), account_id)
        if record is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return record

    @staticmethod
    def _lookup(records: list[AccountRecord], account_id: str) -> Optional[AccountRecord]:
        for record in records:
            if record.id == account_id:
                return record
        for record in records:
            if record.name == account_id:
                return record
        return None

    async def toggle(self, account_id: str, disabled: bool) -> list[AccountRecord]:
        """Enable or disable an account through its owning channel."""
        record = await self.find(account_id)
        if record.source_path is not None:
            await asyncio.to_thread(self._direct.toggle, record.source_path, disabled)
        else:
            await self._client.toggle_auth_file(record.name, disabled)
        return await self._after_mutation()

    async def delete(self, account_id: str) -> list[AccountRecord]:
        """Delete an account through its owning channel."""
        record = await self.find(account_id)
        if record.source_path is not None:
            await asyncio.to_thread(self._direct.delete, record.source_path)
        else:
            await self._client.delete_auth_file(record.name)
        return await self._after_mutation()

    async def create(self, provider: str, email: str, token: str) -> AccountRecord:
        """Write a new auth file for a pasted token and refresh the list."""
        record = await asyncio.to_thread(self._direct.create, provider, email, token)
        await self._after_mutation()
        return record

    async def _after_mutation(self) -> list[AccountRecord]:
        self.invalidate()
        return await self.get_accounts(force_refresh=True)
