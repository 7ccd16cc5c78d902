"""Periodic MCP connectivity monitor.

:class:`HealthMonitor` owns at most one background task. Every tick it
probes the first enabled tool and publishes ``connected`` or ``error``;
with no enabled tools it publishes ``disconnected`` without touching the
network. Loop ticks, :meth:`HealthMonitor.check_now` and
:meth:`HealthMonitor.test_connection` share one lock, so probes never overlap.

``start()`` always stops first, and ``stop()`` is synchronous: once it
returns no further probe is started and no tick result is published.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from keyrelay.events import Observable
from keyrelay.mcp.catalog import enabled_tools
from keyrelay.mcp.probe import ToolProber, summarize_results
from keyrelay.models import ConnectionStatus, ConnectionTestReport, TestOutcome, ToolConfig

logger = logging.getLogger(__name__)

ToolSource = Callable[[], list[ToolConfig]]
Sleep = Callable[[float], Awaitable[None]]


class HealthMonitor:
    """Publish MCP connectivity on a fixed interval.

    Args:
        prober: Probes a single tool endpoint.
        tools: Returns the current tool list (with ``enabled`` applied).
        interval: Seconds between ticks.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        prober: ToolProber,
        tools: ToolSource,
        interval: float = 60.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._prober = prober
        self._tools = tools
        self._interval = interval
        self._sleep = sleep
        self._generation = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._probe_lock = asyncio.Lock()
        self.last_error: Optional[str] = None
        self.status: Observable[ConnectionStatus] = Observable(ConnectionStatus.DISCONNECTED)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """(Re)start the tick loop. Must be called from a running event loop."""
        self.stop()
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(self._run(generation))
        logger.debug("Health monitor started (interval %.1fs)", self._interval)

    def stop(self) -> None:
        """Cancel the tick loop. Safe to call repeatedly."""
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug("Health monitor stopped")

    def set_enabled(self, enabled: bool) -> None:
        """Follow the integration's enabled flag.

        Enabling (re)starts the loop; disabling stops it and publishes
        ``disconnected``.
        """
        if enabled:
            self.start()
        else:
            self.stop()
            self.status.set(ConnectionStatus.DISCONNECTED)

    # ------------------------------------------------------------------ #
    # Checks
    # ------------------------------------------------------------------ #

    async def check_now(self) -> ConnectionStatus:
        """Run one tick immediately and return the published status."""
        return await self._check(generation=None)

    async def test_connection(self) -> ConnectionTestReport:
        """Probe every enabled tool and publish the aggregate status.

        Publishes ``connecting`` first, then ``connected`` when all or some
        tools answered, ``error`` when none did. With no enabled tools the
        status becomes ``disconnected``.
        """
        tools = enabled_tools(self._tools())
        if not tools:
            self.status.set(ConnectionStatus.DISCONNECTED)
            return summarize_results([])

        self.status.set(ConnectionStatus.CONNECTING)
        async with self._probe_lock:
            report = summarize_results(await self._prober.probe_all(tools))
        if report.outcome == TestOutcome.ALL_FAILED:
            self.last_error = report.results[0].message if report.results else report.message
            self.status.set(ConnectionStatus.ERROR)
        else:
            self.last_error = None if report.success else report.message
            self.status.set(ConnectionStatus.CONNECTED)
        return report

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            await self._sleep(self._interval)
            if generation != self._generation:
                return
            await self._check(generation)

    async def _check(self, generation: Optional[int]) -> ConnectionStatus:
        tools = enabled_tools(self._tools())
        if not tools:
            status = ConnectionStatus.DISCONNECTED
        else:
            async with self._probe_lock:
                if generation is not None and generation != self._generation:
                    return self.status.value
                result = await self._prober.probe(tools[0])
            status = ConnectionStatus.CONNECTED if result.success else ConnectionStatus.ERROR
            self.last_error = None if result.success else result.message
        if generation is not None and generation != self._generation:
            return self.status.value
        self.status.set(status)
        return status
