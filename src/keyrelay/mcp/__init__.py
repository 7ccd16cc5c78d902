"""MCP integration: tool catalog, probes, health monitor and settings sync.

- :mod:`keyrelay.mcp.catalog` -- the static tool list and endpoint URLs.
- :mod:`keyrelay.mcp.probe` -- :class:`ToolProber` and :func:`summarize_results`.
- :mod:`keyrelay.mcp.health` -- :class:`HealthMonitor`.
- :mod:`keyrelay.mcp.sync` -- :class:`ConfigSynchronizer` and :func:`generate_block`.
"""

from keyrelay.mcp.catalog import default_tools, endpoint_url, tools_for
from keyrelay.mcp.health import HealthMonitor
from keyrelay.mcp.probe import ToolProber, summarize_results
from keyrelay.mcp.sync import ConfigSynchronizer, generate_block

__all__ = [
    "ConfigSynchronizer",
    "HealthMonitor",
    "ToolProber",
    "default_tools",
    "endpoint_url",
    "generate_block",
    "summarize_results",
    "tools_for",
]
