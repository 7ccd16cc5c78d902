"""Explicit wiring of keyrelay's runtime services.

:class:`Services` builds every component from one
:class:`~keyrelay.models.AppSettings` and passes collaborators through
constructors. There are no module-level singletons; whoever creates a
``Services`` owns its lifecycle (``start()`` then ``aclose()``, or use it as
an async context manager).

Example::

    async with Services.from_settings(resolve_settings()) as services:
        records = await services.accounts.get_accounts()
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from pathlib import Path
from typing import Callable, Optional

import httpx

from keyrelay.accounts.direct import DirectScanProvider
from keyrelay.accounts.store import CredentialStore
from keyrelay.client.management import ManagementAPIClient
from keyrelay.config import get_auth_dir, get_tool_settings_path, resolve_secret
from keyrelay.mcp.catalog import tools_for
from keyrelay.mcp.health import HealthMonitor
from keyrelay.mcp.probe import ToolProber
from keyrelay.mcp.sync import ConfigSynchronizer
from keyrelay.models import AppSettings, ConfigMode, MCPSettings, OAuthSession, OAuthState
from keyrelay.oauth import BrowserLauncher, OAuthFlowController

logger = logging.getLogger(__name__)


class Services:
    """Container for the account store, OAuth flow and MCP services.

    Args:
        settings: Effective application settings.
        management_key: Bearer secret for the management API.
        mcp_secret: Returns the upstream MCP API key on demand.
        transport: Optional httpx transport shared by the management client
            and the prober (tests pass :class:`httpx.MockTransport`).
        browser_launcher: Opens OAuth URLs.
    """

    def __init__(
        self,
        settings: AppSettings,
        management_key: str = "",
        mcp_secret: Optional[Callable[[], str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        browser_launcher: BrowserLauncher = webbrowser.open,
    ) -> None:
        self.settings = settings
        self._mcp_secret = mcp_secret or (lambda: "")
        self._background: set[asyncio.Task[object]] = set()
        self._unsubscribe: list[Callable[[], None]] = []

        self.client = ManagementAPIClient(
            settings.proxy.base_url,
            management_key,
            timeout=settings.proxy.request_timeout,
            transport=transport,
        )
        self.direct = DirectScanProvider(get_auth_dir(settings))
        self.accounts = CredentialStore(
            self.client, self.direct, cache_ttl=settings.proxy.accounts_cache_ttl
        )
        self.oauth = OAuthFlowController(
            self.client,
            browser_launcher=browser_launcher,
            poll_interval=settings.oauth.poll_interval,
            max_attempts=settings.oauth.max_attempts,
        )
        self.prober = ToolProber(
            mode=settings.mcp.mode,
            secret=self._prober_secret(settings.mcp),
            relay_base_url=settings.mcp.relay_base_url,
            timeout=settings.mcp.probe_timeout,
            transport=transport,
        )
        self.health = HealthMonitor(
            self.prober,
            tools=lambda: tools_for(self.settings.mcp),
            interval=settings.mcp.health_interval,
        )
        self.sync = ConfigSynchronizer(settings.mcp, self._mcp_secret)

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        browser_launcher: BrowserLauncher = webbrowser.open,
    ) -> Services:
        """Build services, resolving secrets from their configured sources.

        Missing secrets resolve to ``""``; operations that need one report
        the problem when they run.
        """
        management_key = resolve_secret(settings.proxy.management_key_source, required=False)

        def mcp_secret() -> str:
            return resolve_secret(settings.mcp.api_key_source, required=False)

        return cls(
            settings,
            management_key=management_key,
            mcp_secret=mcp_secret,
            transport=transport,
            browser_launcher=browser_launcher,
        )

    @property
    def tool_settings_path(self) -> Path:
        return get_tool_settings_path(self.settings)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Subscribe internal listeners and start the health monitor if enabled."""
        self._unsubscribe.append(self.oauth.session.subscribe(self._on_oauth_session))
        if self.settings.mcp.enabled:
            self.health.start()

    async def aclose(self) -> None:
        """Stop background work and close HTTP clients."""
        self.health.stop()
        self.oauth.cancel()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.prober.aclose()
        await self.client.aclose()

    async def __aenter__(self) -> Services:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Settings changes
    # ------------------------------------------------------------------ #

    def update_mcp_settings(self, mcp: MCPSettings) -> None:
        """Swap in new MCP settings and follow the enabled flag."""
        self.settings = self.settings.model_copy(update={"mcp": mcp})
        self.sync.settings = mcp
        self.prober.mode = mcp.mode
        self.prober.secret = self._prober_secret(mcp)
        self.prober.relay_base_url = mcp.relay_base_url
        self.health.set_enabled(mcp.enabled)

    def _prober_secret(self, mcp: MCPSettings) -> str:
        return self._mcp_secret() if mcp.mode == ConfigMode.DIRECT else ""

    # ------------------------------------------------------------------ #
    # Listeners
    # ------------------------------------------------------------------ #

    def _on_oauth_session(self, session: OAuthSession) -> None:
        if session.state != OAuthState.SUCCESS:
            return
        logger.debug("OAuth succeeded for %s, refreshing accounts", session.provider)
        task = asyncio.get_running_loop().create_task(
            self.accounts.get_accounts(force_refresh=True)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
