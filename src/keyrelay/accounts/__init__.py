"""Credential accounts: direct disk access and the merged, cached view.

- :class:`DirectScanProvider` -- reads and mutates auth files on disk.
- :class:`CredentialStore` -- merges the management API and the disk scan
  with deterministic fallback, and routes mutations to the owning channel.
- :func:`merge_sources` -- reconciles logical duplicates across sources.
"""

from keyrelay.accounts.direct import DirectScanProvider
from keyrelay.accounts.store import CredentialStore, merge_sources

__all__ = ["CredentialStore", "DirectScanProvider", "merge_sources"]
