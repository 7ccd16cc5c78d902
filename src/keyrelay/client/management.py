"""Asynchronous client for the local proxy's management API.

:class:`ManagementAPIClient` wraps :class:`httpx.AsyncClient` and exposes the
handful of management operations keyrelay needs: listing, toggling and
deleting auth files, managing API keys, reading quotas and usage, listing
models, and the two halves of the browser OAuth flow (initiate and poll).

keyrelay is a client only; the proxy owns the semantics of every endpoint.
All requests carry ``Authorization: Bearer <management key>`` and go to
``<base_url>/v0/management``.

Network-level failures are raised as
:class:`~keyrelay.exceptions.TransientNetworkError`; HTTP error statuses are
mapped to typed exceptions by :meth:`ManagementAPIClient._map_response_error`.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import httpx
from pydantic import ValidationError

from keyrelay.exceptions import (
    AuthenticationError,
    InvalidUsageError,
    KeyrelayError,
    NotFoundError,
    ServerError,
    TransientNetworkError,
)
from keyrelay.models import AccountRecord, AccountStatus, QuotaInfo

logger = logging.getLogger(__name__)

MANAGEMENT_PREFIX = "/v0/management"

OAUTH_ENDPOINTS: dict[str, str] = {
    "gemini-cli": "/gemini-cli-auth-url?is_webui=true",
    "gemini": "/gemini-cli-auth-url?is_webui=true",
    "claude": "/anthropic-auth-url?is_webui=true",
    "codex": "/codex-auth-url?is_webui=true",
    "qwen": "/qwen-auth-url",
    "iflow": "/iflow-auth-url?is_webui=true",
    "antigravity": "/antigravity-auth-url?is_webui=true",
    "kiro": "/kiro-auth-url?is_webui=true",
}
"""Provider id -> management endpoint that returns a browser authorization URL."""


@dataclass(frozen=True)
class OAuthStart:
    """Result of initiating an OAuth flow.

    Attributes:
        authorization_url: URL to open in the user's browser.
        correlation_token: Opaque ``state`` value used to poll for completion.
    """

    authorization_url: str
    correlation_token: str


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, returning ``None`` for anything unparsable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def record_from_api(item: dict[str, Any]) -> AccountRecord:
    """Build an :class:`AccountRecord` from one entry of ``GET /auth-files``.

    The proxy-visible ``name`` is the record's native key. Entries that the
    proxy reports with a ``path`` are file-backed and keep that path as
    :attr:`~AccountRecord.source_path`.
    """
    name = str(item.get("name") or item.get("id") or "")
    path = item.get("path") or None
    record_id = str(item.get("id") or name)
    if not record_id:
        record_id = hashlib.md5(str(path).encode("utf-8")).hexdigest()
    return AccountRecord(
        id=record_id,
        name=name,
        provider=str(item.get("provider") or item.get("type") or "unknown"),
        label=item.get("label") or item.get("email") or item.get("account"),
        status=AccountStatus.parse(item.get("status")),
        status_message=item.get("status_message"),
        disabled=bool(item.get("disabled", False)),
        unavailable=bool(item.get("unavailable", False)),
        source_path=path,
        source="api",
        email=item.get("email"),
        account_type=item.get("account_type"),
        created_at=parse_timestamp(item.get("created_at")),
        last_refresh=parse_timestamp(item.get("last_refresh")),
    )


def _state_from_url(url: str) -> str:
    """Extract the ``state`` query parameter from *url*, generating one if absent."""
    values = parse_qs(urlparse(url).query).get("state")
    if values and values[0]:
        return values[0]
    return str(uuid.uuid4())


class ManagementAPIClient:
    """Asynchronous client for the proxy's ``/v0/management`` API.

    Args:
        base_url: Proxy root URL, e.g. ``http://127.0.0.1:8317``.
        management_key: Bearer secret configured in the proxy.
        timeout: Default per-request timeout in seconds.
        transport: Optional httpx transport (tests pass
            :class:`httpx.MockTransport`).

    Example::

        async with ManagementAPIClient("http://127.0.0.1:8317", key) as client:
            records = await client.list_auth_files()
    """

    def __init__(
        self,
        base_url: str,
        management_key: str = "",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._management_key = management_key
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> ManagementAPIClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Liveness
    # ------------------------------------------------------------------ #

    async def is_running(self, timeout: float = 1.0) -> bool:
        """Cheap liveness check: any HTTP answer from the proxy root counts."""
        try:
            await self._client.get("/", timeout=timeout)
        except httpx.HTTPError as exc:
            logger.debug("Proxy at %s is not reachable: %s", self._base_url, exc)
            return False
        return True

    # ------------------------------------------------------------------ #
    # Auth files
    # ------------------------------------------------------------------ #

    async def list_auth_files(self) -> list[AccountRecord]:
        """Return every auth file the proxy currently knows about."""
        response = await self.request("GET", "/auth-files")
        payload = self._json(response)
        files = payload.get("files") if isinstance(payload, dict) else None
        if not isinstance(files, list):
            return []
        return [record_from_api(item) for item in files if isinstance(item, dict)]

    async def toggle_auth_file(self, name: str, disabled: bool) -> None:
        """Enable or disable an auth file by its proxy-visible name."""
        await self.request("POST", f"/auth-files/{name}/toggle", json_body={"disabled": disabled})

    async def delete_auth_file(self, name: str) -> None:
        """Delete an auth file by its proxy-visible name."""
        await self.request("DELETE", "/auth-files", params={"name": name})

    async def list_auth_file_models(self, name: str) -> list[dict[str, Any]]:
        """Return the models the proxy exposes for one auth file."""
        response = await self.request("GET", "/auth-files/models", params={"name": name})
        payload = self._json(response)
        models = payload.get("models") if isinstance(payload, dict) else None
        return [m for m in models if isinstance(m, dict)] if isinstance(models, list) else []

    # ------------------------------------------------------------------ #
    # API keys
    # ------------------------------------------------------------------ #

    async def list_api_keys(self) -> list[str]:
        response = await self.request("GET", "/api-keys")
        payload = self._json(response)
        keys = payload.get("api-keys") if isinstance(payload, dict) else None
        return [str(k) for k in keys] if isinstance(keys, list) else []

    async def add_api_key(self, key: str) -> None:
        await self.request("POST", "/api-keys", json_body={"key": key})

    async def delete_api_key(self, key: str) -> None:
        await self.request("DELETE", f"/api-keys/{key}")

    # ------------------------------------------------------------------ #
    # Quotas and usage
    # ------------------------------------------------------------------ #

    async def fetch_quota(self, provider: str, account: str) -> QuotaInfo:
        """Return the quota of one provider account.

        Raises:
            NotFoundError: If the proxy knows no such account.
            ServerError: If the proxy answers with something unparsable.
        """
        response = await self.request("GET", f"/quota/{provider}/{account}")
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise ServerError(f"Unexpected quota response for {provider}/{account}")
        try:
            return QuotaInfo.model_validate(payload)
        except ValidationError as exc:
            raise ServerError(f"Malformed quota response for {provider}/{account}: {exc}") from exc

    async def fetch_all_quotas(self) -> list[QuotaInfo]:
        """Return every account quota; an empty list when it cannot be read."""
        try:
            response = await self.request("GET", "/quotas")
        except TransientNetworkError as exc:
            logger.debug("Proxy unreachable, no quotas: %s", exc)
            return []
        except KeyrelayError as exc:
            logger.warning("Failed to fetch quotas: %s", exc)
            return []
        payload = self._json(response)
        if not isinstance(payload, list):
            return []
        quotas: list[QuotaInfo] = []
        for item in payload:
            try:
                quotas.append(QuotaInfo.model_validate(item))
            except ValidationError as exc:
                logger.debug("Skipping malformed quota entry %r: %s", item, exc)
        return quotas

    async def fetch_usage(self) -> dict[str, Any]:
        """Return the proxy's usage statistics; ``{}`` when they cannot be read."""
        try:
            response = await self.request("GET", "/usage")
        except TransientNetworkError as exc:
            logger.debug("Proxy unreachable, no usage: %s", exc)
            return {}
        except KeyrelayError as exc:
            logger.warning("Failed to fetch usage: %s", exc)
            return {}
        payload = self._json(response)
        return payload if isinstance(payload, dict) else {}

    # ------------------------------------------------------------------ #
    # Models
    # ------------------------------------------------------------------ #

    async def list_models(self, api_key: Optional[str] = None) -> list[dict[str, Any]]:
        """List models through the proxy's OpenAI-compatible ``/v1/models``.

        This endpoint lives on the proxy root, not under the management
        prefix, and is authorised with a client API key when one is given.
        """
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        response = await self._send("GET", "/v1/models", headers=headers)
        self._map_response_error(response)
        payload = self._json(response)
        data = payload.get("data") if isinstance(payload, dict) else None
        return [m for m in data if isinstance(m, dict)] if isinstance(data, list) else []

    # ------------------------------------------------------------------ #
    # OAuth
    # ------------------------------------------------------------------ #

    async def initiate_oauth(self, provider: str) -> OAuthStart:
        """Ask the proxy for a browser authorization URL for *provider*.

        Raises:
            InvalidUsageError: If the provider has no OAuth endpoint.
            ServerError: If the proxy answers without a URL.
        """
        endpoint = OAUTH_ENDPOINTS.get(provider)
        if endpoint is None:
            supported = ", ".join(sorted(OAUTH_ENDPOINTS))
            raise InvalidUsageError(
                f"OAuth not supported for provider '{provider}'. Supported: {supported}"
            )
        response = await self.request("GET", endpoint)
        payload = self._json(response)
        if not isinstance(payload, dict):
            raise ServerError("Unexpected OAuth initiate response")
        url = payload.get("url")
        if not url:
            raise ServerError(payload.get("error") or "No OAuth URL returned")
        token = payload.get("state") or _state_from_url(url)
        return OAuthStart(authorization_url=url, correlation_token=token)

    async def poll_oauth_status(self, correlation_token: str) -> str:
        """Return the flow status for *correlation_token*.

        The proxy answers ``pending``, ``ok``, ``error`` or ``failed``. A
        response carrying an ``error`` field is reported as ``error``.
        """
        response = await self.request(
            "GET", "/get-auth-status", params={"state": correlation_token}
        )
        payload = self._json(response)
        if not isinstance(payload, dict):
            return "pending"
        if payload.get("error"):
            logger.debug("OAuth status error: %s", payload["error"])
            return "error"
        return str(payload.get("status") or "pending").lower()

    # ------------------------------------------------------------------ #
    # Request plumbing
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> httpx.Response:
        """Send a management request and map error statuses to exceptions.

        Args:
            method: HTTP method.
            path: Path below ``/v0/management`` (may carry a query string).
            params: Query parameters.
            json_body: JSON-serialisable body.

        Raises:
            AuthenticationError: On 401 / 403.
            NotFoundError: On 404.
            ServerError: On any other error status.
            TransientNetworkError: On network / timeout errors.
        """
        headers = {"Accept": "application/json"}
        if self._management_key:
            headers["Authorization"] = f"Bearer {self._management_key}"
        response = await self._send(
            method, f"{MANAGEMENT_PREFIX}{path}", headers=headers, params=params, json_body=json_body
        )
        self._map_response_error(response)
        return response

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {"headers": headers}
        if params:
            kwargs["params"] = params
        if json_body is not None:
            kwargs["json"] = json_body
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"{method} {url} failed: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _map_response_error(response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        try:
            detail = response.json()
            if isinstance(detail, dict):
                msg = detail.get("message") or detail.get("error") or detail.get("detail") or ""
            else:
                msg = str(detail)
        except Exception:
            msg = response.text[:200] if response.text else ""

        prefix = f"HTTP {status}"
        full_msg = f"{prefix}: {msg}" if msg else prefix

        if status in (401, 403):
            raise AuthenticationError(full_msg)
        if status == 404:
            raise NotFoundError(full_msg)
        raise ServerError(full_msg)
