"""Reachability probes for MCP tool endpoints.

An HTTP tool is probed with a minimal JSON-RPC ``initialize`` request. The
server only has to prove it is there, so any of 200, 201, 204, 400 and 405
counts as reachable; 401 is reported as an authorization failure and every
other status as ``HTTP <code>``.

Stdio tools cannot be reached over the network in direct mode; they are
considered reachable when a non-empty secret is configured (the launcher
receives it through its environment). In proxy mode the relay serves them
over HTTP and they are probed like any other HTTP tool.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import httpx

from keyrelay.mcp.catalog import endpoint_url
from keyrelay.models import (
    ConfigMode,
    ConnectionTestReport,
    ProbeResult,
    ServerType,
    TestOutcome,
    ToolConfig,
)

logger = logging.getLogger(__name__)

INITIALIZE_REQUEST = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {"protocolVersion": "2024-11-05", "capabilities": {}},
}

REACHABLE_STATUSES = frozenset({200, 201, 204, 400, 405})


def _valid_url(url: str) -> bool:
    if not url:
        return False
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)


class ToolProber:
    """Probe tool endpoints over a shared :class:`httpx.AsyncClient`.

    Args:
        mode: Direct (upstream, bearer secret) or proxy (local relay).
        secret: Upstream API key; only sent in direct mode.
        relay_base_url: Root URL of the local relay.
        timeout: Per-probe timeout in seconds.
        transport: Optional httpx transport for tests.
    """

    def __init__(
        self,
        mode: ConfigMode = ConfigMode.DIRECT,
        secret: str = "",
        relay_base_url: str = "http://127.0.0.1:8318",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.mode = mode
        self.secret = secret
        self.relay_base_url = relay_base_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def probe(self, tool: ToolConfig) -> ProbeResult:
        """Probe a single tool. Never raises for network problems."""
        if tool.server_type == ServerType.STDIO and self.mode == ConfigMode.DIRECT:
            if not self.secret:
                return ProbeResult(tool_id=tool.id, success=False, message="No API key configured")
            return ProbeResult(tool_id=tool.id, success=True, message="OK (stdio)")

        url = endpoint_url(tool, self.mode, self.relay_base_url)
        if not _valid_url(url):
            return ProbeResult(
                tool_id=tool.id, success=False, message=f"Invalid endpoint URL: {url!r}"
            )

        headers = {"Content-Type": "application/json"}
        if self.mode == ConfigMode.DIRECT and self.secret:
            headers["Authorization"] = f"Bearer {self.secret}"

        try:
            response = await self._client.post(url, json=INITIALIZE_REQUEST, headers=headers)
        except httpx.HTTPError as exc:
            logger.debug("Probe of %s at %s failed: %s", tool.id, url, exc)
            return ProbeResult(tool_id=tool.id, success=False, message=str(exc) or type(exc).__name__)

        status = response.status_code
        logger.debug("Probe of %s at %s returned %d", tool.id, url, status)
        if status in REACHABLE_STATUSES:
            return ProbeResult(tool_id=tool.id, success=True, message="OK", status_code=status)
        if status == 401:
            return ProbeResult(
                tool_id=tool.id,
                success=False,
                message="Unauthorized: check the API key",
                status_code=status,
                auth_failure=True,
            )
        return ProbeResult(tool_id=tool.id, success=False, message=f"HTTP {status}", status_code=status)

    async def probe_all(self, tools: Iterable[ToolConfig]) -> list[ProbeResult]:
        """Probe *tools* one after another, in order."""
        return [await self.probe(tool) for tool in tools]


def summarize_results(results: list[ProbeResult]) -> ConnectionTestReport:
    """Fold per-tool results into one report.

    A mix of successes and failures is ``PARTIAL``: a degraded success whose
    message names the failing tools.
    """
    if not results:
        return ConnectionTestReport(outcome=TestOutcome.ALL_FAILED, message="No tools enabled")
    failed = [r.tool_id for r in results if not r.success]
    if not failed:
        return ConnectionTestReport(
            outcome=TestOutcome.ALL_SUCCEEDED, message="All tools reachable", results=results
        )
    if len(failed) == len(results):
        first = next(r for r in results if not r.success)
        return ConnectionTestReport(
            outcome=TestOutcome.ALL_FAILED,
            message=f"All tools failed: {first.message}",
            results=results,
            failed_tools=failed,
        )
    return ConnectionTestReport(
        outcome=TestOutcome.PARTIAL,
        message=f"Some tools failed: {', '.join(failed)}",
        results=results,
        failed_tools=failed,
    )
