"""HTTP client module for keyrelay.

Provides the asynchronous client for the local proxy's management API.

Classes:
    :class:`ManagementAPIClient` -- non-blocking client backed by
    :class:`httpx.AsyncClient`.
    :class:`OAuthStart` -- result of initiating a browser OAuth flow.

Example::

    from keyrelay.client import ManagementAPIClient

    async with ManagementAPIClient("http://127.0.0.1:8317", key) as client:
        if await client.is_running():
            records = await client.list_auth_files()
"""

from keyrelay.client.management import ManagementAPIClient, OAuthStart

__all__ = ["ManagementAPIClient", "OAuthStart"]
