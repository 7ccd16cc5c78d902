"""Static catalog of the upstream MCP tools keyrelay can wire up."""

from __future__ import annotations

from typing import Iterable, Optional

from keyrelay.models import ConfigMode, MCPSettings, ServerType, ToolConfig

VISION_PACKAGE = "@z_ai/mcp-server"


def default_tools(upstream_base_url: str = "https://api.z.ai/api") -> list[ToolConfig]:
    """Return a fresh copy of the tool catalog, every tool enabled."""
    base = upstream_base_url.rstrip("/")
    return [
        ToolConfig(
            id="web_search",
            name="Web Search",
            description="Search the web and return ranked results",
            endpoint="/mcp/web_search_prime/mcp",
            full_url=f"{base}/mcp/web_search_prime/mcp",
        ),
        ToolConfig(
            id="web_reader",
            name="Web Reader",
            description="Fetch a web page and return its readable content",
            endpoint="/mcp/web_reader/mcp",
            full_url=f"{base}/mcp/web_reader/mcp",
        ),
        ToolConfig(
            id="zread",
            name="ZRead",
            description="Read and search public code repositories",
            endpoint="/mcp/zread/mcp",
            full_url=f"{base}/mcp/zread/mcp",
        ),
        ToolConfig(
            id="vision",
            name="Vision",
            description="Image and video understanding (runs locally through npx)",
            endpoint="/mcp/zai-mcp-server/mcp",
            server_type=ServerType.STDIO,
            command="npx",
            args=["-y", VISION_PACKAGE],
            secret_env="Z_AI_API_KEY",
            extra_env={"Z_AI_MODE": "ZAI"},
        ),
    ]


def tools_for(settings: MCPSettings) -> list[ToolConfig]:
    """The catalog with ``enabled`` applied from *settings*.

    ``enabled_tools = None`` enables every tool; a list enables exactly the
    ids it names, in catalog order.
    """
    wanted: Optional[set[str]] = (
        None if settings.enabled_tools is None else set(settings.enabled_tools)
    )
    return [
        tool.model_copy(update={"enabled": wanted is None or tool.id in wanted})
        for tool in default_tools(settings.upstream_base_url)
    ]


def enabled_tools(tools: Iterable[ToolConfig]) -> list[ToolConfig]:
    return [tool for tool in tools if tool.enabled]


def tool_ids() -> list[str]:
    return [tool.id for tool in default_tools()]


def endpoint_url(tool: ToolConfig, mode: ConfigMode, relay_base_url: str) -> str:
    """URL a client should use to reach *tool* in *mode*.

    Direct mode uses the upstream URL (empty for stdio tools, which have
    none); proxy mode always goes through the local relay.
    """
    if mode == ConfigMode.PROXY:
        return relay_base_url.rstrip("/") + tool.endpoint
    return tool.full_url
