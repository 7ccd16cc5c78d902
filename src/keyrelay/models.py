"""Canonical Pydantic models shared across all keyrelay modules.

This is the single source of truth for data shapes in the project. The models
fall into three groups:

**Settings models** -- serialised as JSON in the user's config directory:
    :class:`ProxySettings`, :class:`OAuthSettings`, :class:`MCPSettings`
    and :class:`AppSettings`.

**Account and flow state** -- snapshots published by the runtime services:
    :class:`AccountRecord`, :class:`QuotaInfo`, :class:`ConnectionStatus`,
    :class:`OAuthSession`.

**MCP tooling** -- the static tool catalog and probe results:
    :class:`ToolConfig`, :class:`ProbeResult`, :class:`ConnectionTestReport`.

Snapshot models are frozen; derive a new snapshot with
``model_copy(update=...)`` instead of mutating one that readers may hold.
"""

from __future__ import annotations

import enum
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Accounts ---


class AccountStatus(str, enum.Enum):
    """Last known health of a credential account, as reported by the proxy."""

    READY = "ready"
    COOLING = "cooling"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> AccountStatus:
        """Map a raw status string to a member, defaulting to ``UNKNOWN``."""
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN


class AccountRecord(BaseModel):
    """One credential account in the merged view of both data sources.

    ``disabled`` and ``status`` are orthogonal: a disabled account keeps its
    last known status but is excluded from routing and probing.

    Records carrying a :attr:`source_path` are owned by the filesystem and are
    mutated through :class:`~keyrelay.accounts.direct.DirectScanProvider`;
    records without one are mutated through the management API by
    :attr:`name`.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier within the merged view")
    name: str = Field(description="Proxy-visible file name")
    provider: str = "unknown"
    label: Optional[str] = None
    status: AccountStatus = AccountStatus.UNKNOWN
    status_message: Optional[str] = None
    disabled: bool = False
    unavailable: bool = False
    source_path: Optional[Path] = Field(
        default=None, description="Backing file, when the record is file-owned"
    )
    source: str = Field(default="api", description="Where the record came from: api, file")
    email: Optional[str] = None
    account_type: Optional[str] = None
    created_at: Optional[datetime] = None
    last_refresh: Optional[datetime] = None

    @property
    def is_ready(self) -> bool:
        """Whether the account can currently serve requests."""
        return self.status == AccountStatus.READY and not self.disabled and not self.unavailable

    @property
    def merge_key(self) -> tuple[str, str]:
        """Logical identity used to reconcile records across sources."""
        return (self.provider, (self.label or self.email or self.name).lower())


class QuotaInfo(BaseModel):
    """Usage quota the proxy reports for one provider account."""

    provider: str
    account: str
    used: int = 0
    limit: int = 0
    reset_at: Optional[str] = None
    is_unlimited: bool = False
    is_pro: bool = False
    status: str = "unknown"

    @property
    def percentage_used(self) -> float:
        """Share of the limit consumed, capped at 100; 0 when unlimited."""
        if self.is_unlimited or self.limit <= 0:
            return 0.0
        return min(100.0, self.used / self.limit * 100)


# --- Connection / OAuth state ---


class ConnectionStatus(str, enum.Enum):
    """Aggregate MCP connectivity published by the health monitor."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class OAuthState(str, enum.Enum):
    """States of the browser OAuth flow."""

    IDLE = "idle"
    WAITING = "waiting"
    POLLING = "polling"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (OAuthState.SUCCESS, OAuthState.ERROR)


class OAuthSession(BaseModel):
    """Snapshot of an OAuth flow published by the flow controller."""

    model_config = ConfigDict(frozen=True)

    state: OAuthState = OAuthState.IDLE
    provider: Optional[str] = None
    correlation_token: Optional[str] = None
    authorization_url: Optional[str] = None
    attempts: int = 0
    max_attempts: int = 150
    error: Optional[str] = None


# --- MCP tooling ---


class ServerType(str, enum.Enum):
    """Transport of an MCP tool: network-reachable or locally spawned."""

    HTTP = "http"
    STDIO = "stdio"


class ConfigMode(str, enum.Enum):
    """How generated server entries reach the upstream service.

    ``DIRECT`` embeds the secret and points at the upstream; ``PROXY`` points
    at the local relay, which injects authentication itself.
    """

    DIRECT = "direct"
    PROXY = "proxy"


class ToolConfig(BaseModel):
    """A static MCP tool catalog entry. Only :attr:`enabled` ever changes."""

    id: str
    name: str
    description: str = ""
    endpoint: str = Field(description="Path of the tool on the local relay")
    full_url: str = Field(default="", description="Upstream URL used in direct mode")
    server_type: ServerType = ServerType.HTTP
    enabled: bool = True
    command: Optional[str] = Field(default=None, description="Launcher for stdio tools")
    args: list[str] = Field(default_factory=list)
    secret_env: Optional[str] = Field(
        default=None, description="Environment variable that receives the secret"
    )
    extra_env: dict[str, str] = Field(default_factory=dict)


class ProbeResult(BaseModel):
    """Outcome of probing a single tool endpoint."""

    tool_id: str
    success: bool
    message: str
    status_code: Optional[int] = None
    auth_failure: bool = False


class TestOutcome(str, enum.Enum):
    """Aggregate result of testing several tools at once."""

    __test__ = False

    ALL_SUCCEEDED = "all_succeeded"
    ALL_FAILED = "all_failed"
    PARTIAL = "partial"


class ConnectionTestReport(BaseModel):
    """Result of a multi-tool connection test.

    ``PARTIAL`` is a degraded success: callers should show
    :attr:`failed_tools` rather than treat the whole test as failed.
    """

    outcome: TestOutcome
    message: str
    results: list[ProbeResult] = Field(default_factory=list)
    failed_tools: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome == TestOutcome.ALL_SUCCEEDED


# --- Settings ---


class ProxySettings(BaseModel):
    """Where the local proxy lives and how to talk to it."""

    host: str = Field(default="127.0.0.1", description="Proxy bind address")
    port: int = Field(default=8317, ge=1, le=65535, description="Proxy port")
    management_key_source: str = Field(
        default="env:KEYRELAY_MANAGEMENT_KEY",
        description="Management key source: env:VAR, file:/path, store:NAME, value:LITERAL",
    )
    auth_dir: Optional[str] = Field(
        default=None, description="Auth file directory (default ~/.cli-proxy-api)"
    )
    accounts_cache_ttl: float = Field(
        default=5.0, ge=0, description="Seconds an authoritative account list stays cached"
    )
    request_timeout: float = Field(default=5.0, gt=0, description="Management API timeout")

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


class OAuthSettings(BaseModel):
    """Polling bounds for the OAuth flow (150 x 2 s = 5 minutes)."""

    poll_interval: float = Field(default=2.0, ge=0)
    max_attempts: int = Field(default=150, ge=1)


class MCPSettings(BaseModel):
    """MCP integration settings."""

    enabled: bool = False
    mode: ConfigMode = ConfigMode.DIRECT
    api_key_source: str = Field(
        default="store:mcp", description="Secret source for the upstream MCP API key"
    )
    upstream_base_url: str = "https://api.z.ai/api"
    relay_port: int = Field(default=8318, ge=1, le=65535)
    enabled_tools: Optional[list[str]] = Field(
        default=None, description="Enabled tool ids (None = every catalog tool)"
    )
    settings_path: Optional[str] = Field(
        default=None, description="External settings file (default ~/.claude/settings.json)"
    )
    owner_prefix: str = Field(default="keyrelay-", min_length=1)
    health_interval: float = Field(default=60.0, gt=0)
    probe_timeout: float = Field(default=10.0, gt=0)

    @property
    def relay_base_url(self) -> str:
        return f"http://127.0.0.1:{self.relay_port}"


class AppSettings(BaseModel):
    """User-wide settings persisted at ``~/.config/keyrelay/config.json``.

    Loaded and saved by :func:`~keyrelay.config.load_settings` and
    :func:`~keyrelay.config.save_settings`; see
    :func:`~keyrelay.config.resolve_settings` for the precedence chain.
    """

    proxy: ProxySettings = Field(default_factory=ProxySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    mcp: MCPSettings = Field(default_factory=MCPSettings)
