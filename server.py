"""
CTG Vault canonical entrypoint.

This is the single source of truth for:
- MCP server name
- tool registration order
"""

from __future__ import annotations

from fastmcp import FastMCP

from app.core.container import global_container
from app.tools.vault import register_vault_tools
from observability import build_log_context, log_event

# Initialize FastMCP server
mcp = FastMCP("CTG-Vault")

# Register Tools
register_vault_tools(mcp)


def _log_refresh(network) -> None:
    log_event("balances_stale", ctx=build_log_context(tool="server"), data={"network": network.value})


def main() -> None:
    global_container.coordinator.add_refresh_listener(_log_refresh)
    log_event(
        "server_starting",
        ctx=build_log_context(tool="server"),
        data={"name": mcp.name, "settings": global_container.settings.to_dict()},
    )
    mcp.run()


if __name__ == "__main__":
    main()
