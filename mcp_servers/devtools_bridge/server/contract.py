"""Protocol and tool contract definitions.

Single source of truth for the supported MCP protocol versions, server
identity, advertised capabilities and the tool list.
"""

from __future__ import annotations

from typing import Any

SERVER_INFO: dict[str, str] = {"name": "devtools-bridge", "version": "0.1.0"}

SUPPORTED_PROTOCOL_VERSIONS = ["0.1.0", "2025-06-18", "2024-11-05"]
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[1]
DEFAULT_PROTOCOL_VERSION = LATEST_PROTOCOL_VERSION

CAPABILITIES: dict[str, Any] = {
    "logging": {},
    "tools": {"listChanged": False},
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "switch_browser",
        "description": (
            "Disconnect from the current browser and connect to another one. "
            "Give a container/host name (resolved to an address), a browserUrl "
            "(http://host:port of the DevTools endpoint) or a raw wsEndpoint."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "container": {"type": "string", "description": "Container or host name, e.g. webtop2"},
                "port": {"type": "integer", "description": "DevTools port (default: forwarding port, then 9222)"},
                "browserUrl": {"type": "string", "description": "e.g. http://10.0.0.5:9999"},
                "wsEndpoint": {"type": "string", "description": "ws://host:port/devtools/browser/<id>"},
            },
        },
    },
    {
        "name": "list_browsers",
        "description": "List configured browser hosts with their resolved addresses, plus the current connection.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "get_current_browser",
        "description": "Show the browser currently connected: endpoint, version, status and open page count.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "list_pages",
        "description": "List the open pages of the connected browser (connects or launches on demand).",
        "inputSchema": {"type": "object", "properties": {}},
    },
]


def select_protocol(requested: Any) -> str:
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return DEFAULT_PROTOCOL_VERSION


def initialize_result(protocol: str) -> dict[str, Any]:
    return {
        "protocolVersion": protocol,
        "serverInfo": SERVER_INFO,
        "capabilities": CAPABILITIES,
        "instructions": "",
    }


def tools_list() -> list[dict[str, Any]]:
    return TOOL_DEFINITIONS
