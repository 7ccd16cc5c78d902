"""keyrelay -- manage local AI-proxy accounts and keep MCP settings in sync.

keyrelay talks to a locally running API proxy (its ``/v0/management``
endpoint) to list, toggle and delete provider credential files, falls back to
scanning the proxy's auth directory when the API is unreachable or
ambiguous, drives the browser OAuth flow for adding new accounts, and writes
an owner-prefixed ``mcpServers`` block into an external CLI tool's settings
file.

Typical workflow::

    keyrelay accounts list          # merged account view
    keyrelay login claude           # add an account through OAuth
    keyrelay mcp enable             # inject MCP servers into settings.json

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware settings and secret resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    runtime: Explicitly wired service container.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
