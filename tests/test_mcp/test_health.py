"""Tests for the periodic MCP health monitor."""

from __future__ import annotations

import asyncio
from typing import Optional
from unittest.mock import AsyncMock

import pytest

from keyrelay.mcp.catalog import default_tools, tools_for
from keyrelay.mcp.health import HealthMonitor
from keyrelay.mcp.probe import ToolProber
from keyrelay.models import (
    ConnectionStatus,
    MCPSettings,
    ProbeResult,
    TestOutcome,
    ToolConfig,
)


class _FakeProber:
    """Records probed tool ids; ``failing`` ids report failure."""

    def __init__(self, failing: Optional[set[str]] = None) -> None:
        self.failing = failing or set()
        self.probed: list[str] = []

    async def probe(self, tool: ToolConfig) -> ProbeResult:
        self.probed.append(tool.id)
        ok = tool.id not in self.failing
        return ProbeResult(tool_id=tool.id, success=ok, message="OK" if ok else "HTTP 503")

    async def probe_all(self, tools: list[ToolConfig]) -> list[ProbeResult]:
        return [await self.probe(tool) for tool in tools]


def _make_monitor(
    prober: _FakeProber,
    enabled: Optional[list[str]] = None,
    interval: float = 0.01,
) -> tuple[HealthMonitor, list[ConnectionStatus]]:
    settings = MCPSettings(enabled_tools=enabled)
    monitor = HealthMonitor(
        prober,  # type: ignore[arg-type]
        tools=lambda: tools_for(settings),
        interval=interval,
    )
    seen: list[ConnectionStatus] = []
    monitor.status.subscribe(seen.append)
    return monitor, seen


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestCheckNow:
    @pytest.mark.asyncio
    async def test_probes_first_enabled_tool(self) -> None:
        prober = _FakeProber()
        monitor, seen = _make_monitor(prober, enabled=["zread", "web_reader"])

        status = await monitor.check_now()

        assert status == ConnectionStatus.CONNECTED
        assert prober.probed == ["web_reader"]
        assert seen == [ConnectionStatus.CONNECTED]

    @pytest.mark.asyncio
    async def test_failure_sets_error(self) -> None:
        prober = _FakeProber(failing={"web_search"})
        monitor, _ = _make_monitor(prober)

        assert await monitor.check_now() == ConnectionStatus.ERROR
        assert monitor.last_error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_no_enabled_tools_is_disconnected(self) -> None:
        prober = _FakeProber()
        monitor, _ = _make_monitor(prober, enabled=[])

        assert await monitor.check_now() == ConnectionStatus.DISCONNECTED
        assert prober.probed == []


class TestLoop:
    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self) -> None:
        prober = _FakeProber()
        monitor, seen = _make_monitor(prober, interval=0.01)

        monitor.start()
        assert monitor.is_running
        await _wait_for(lambda: len(prober.probed) >= 2)
        monitor.stop()
        probes_at_stop = len(prober.probed)
        published_at_stop = len(seen)

        await asyncio.sleep(0.03)
        assert len(prober.probed) == probes_at_stop
        assert len(seen) == published_at_stop
        assert not monitor.is_running

    @pytest.mark.asyncio
    async def test_restart_keeps_single_loop(self) -> None:
        prober = _FakeProber()
        monitor, _ = _make_monitor(prober, interval=0.05)

        monitor.start()
        monitor.start()
        await _wait_for(lambda: len(prober.probed) >= 1)
        await asyncio.sleep(0.01)
        monitor.stop()

        assert len(prober.probed) == 1

    @pytest.mark.asyncio
    async def test_set_enabled(self) -> None:
        prober = _FakeProber()
        monitor, seen = _make_monitor(prober, interval=10)

        monitor.set_enabled(True)
        assert monitor.is_running
        monitor.set_enabled(False)
        assert not monitor.is_running
        assert seen[-1] == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_stop_during_probe_discards_result(self) -> None:
        monitor: Optional[HealthMonitor] = None

        async def _probe(tool: ToolConfig) -> ProbeResult:
            monitor.stop()
            return ProbeResult(tool_id=tool.id, success=True, message="OK")

        prober = AsyncMock(spec=ToolProber)
        prober.probe.side_effect = _probe
        monitor = HealthMonitor(
            prober, tools=lambda: tools_for(MCPSettings()), interval=0.01
        )
        seen: list[ConnectionStatus] = []
        monitor.status.subscribe(seen.append)

        monitor.start()
        await _wait_for(lambda: prober.probe.await_count == 1)
        await asyncio.sleep(0.03)

        assert seen == []
        assert prober.probe.await_count == 1

    @pytest.mark.asyncio
    async def test_manual_checks_wait_for_running_tick(self) -> None:
        gate = asyncio.Event()
        active = 0
        peak = 0

        class _GatedProber(_FakeProber):
            async def probe(self, tool: ToolConfig) -> ProbeResult:
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                try:
                    await gate.wait()
                    return await super().probe(tool)
                finally:
                    active -= 1

        prober = _GatedProber()
        monitor, _ = _make_monitor(prober, interval=0.001)

        monitor.start()
        await _wait_for(lambda: active == 1)
        manual = asyncio.gather(monitor.check_now(), monitor.test_connection())
        await asyncio.sleep(0.01)
        assert active == 1
        gate.set()
        status, report = await manual
        monitor.stop()

        assert peak == 1
        assert status == ConnectionStatus.CONNECTED
        assert report.outcome == TestOutcome.ALL_SUCCEEDED

    def test_stop_without_start(self) -> None:
        monitor, _ = _make_monitor(_FakeProber())
        monitor.stop()
        monitor.stop()


class TestConnectionTest:
    @pytest.mark.asyncio
    async def test_all_succeeded(self) -> None:
        prober = _FakeProber()
        monitor, seen = _make_monitor(prober)

        report = await monitor.test_connection()

        assert report.outcome == TestOutcome.ALL_SUCCEEDED
        assert prober.probed == [t.id for t in default_tools()]
        assert seen == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]

    @pytest.mark.asyncio
    async def test_partial_is_connected(self) -> None:
        monitor, seen = _make_monitor(_FakeProber(failing={"zread"}))

        report = await monitor.test_connection()

        assert report.outcome == TestOutcome.PARTIAL
        assert seen[-1] == ConnectionStatus.CONNECTED
        assert "zread" in monitor.last_error

    @pytest.mark.asyncio
    async def test_all_failed_is_error(self) -> None:
        monitor, seen = _make_monitor(
            _FakeProber(failing={"web_search", "zread"}), enabled=["web_search", "zread"]
        )

        report = await monitor.test_connection()

        assert report.outcome == TestOutcome.ALL_FAILED
        assert seen[-1] == ConnectionStatus.ERROR
        assert monitor.last_error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_no_tools(self) -> None:
        prober = _FakeProber()
        monitor, seen = _make_monitor(prober, enabled=[])

        report = await monitor.test_connection()

        assert report.message == "No tools enabled"
        assert seen == [ConnectionStatus.DISCONNECTED]
        assert prober.probed == []
