"""
MCP server bridging an agent to Chrome DevTools Protocol browsers.

This module provides the main entry point and protocol handling.
Tool dispatch is handled via registry pattern in server/registry.py.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any

from .config import BridgeConfig
from .dispatch import DispatchSerializer
from .errors import BridgeError, ExclusivityViolation
from .server.contract import (
    DEFAULT_PROTOCOL_VERSION,
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    initialize_result,
    select_protocol,
    tools_list,
)
from .server.redaction import redact_jsonrpc_for_log, redact_tool_arguments
from .server.registry import create_default_registry, suggestion_for
from .server.types import ToolResult
from .session_manager import ConnectionManager
from .switch import InstanceSwitcher

logger = logging.getLogger("mcp.devtools_bridge")

__all__ = [
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LATEST_PROTOCOL_VERSION",
    "DEFAULT_PROTOCOL_VERSION",
    "McpServer",
    "main",
]


def _write_message(payload: dict[str, Any]) -> None:
    """Write JSON-RPC message to stdout."""
    data = json.dumps(payload, ensure_ascii=False, default=str)
    sys.stdout.buffer.write((data + "\n").encode())
    sys.stdout.buffer.flush()


def _read_message() -> dict[str, Any] | None:
    """Read JSON-RPC message from stdin. None on EOF; {} for a blank line."""
    line = sys.stdin.buffer.readline()
    if not line:
        return None
    line = line.strip()
    if not line:
        return {}
    try:
        msg = json.loads(line.decode())
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("bad_frame reason=%s", exc)
        return {}
    if os.environ.get("MCP_TRACE"):
        logger.info("recv %s", redact_jsonrpc_for_log(msg))
    return msg if isinstance(msg, dict) else {}


class McpServer:
    """MCP Server with registry-based tool dispatch."""

    def __init__(self, config: BridgeConfig | None = None, manager: ConnectionManager | None = None) -> None:
        self.config = config or BridgeConfig.from_env()
        self.manager = manager or ConnectionManager(self.config)
        self.serializer = DispatchSerializer()
        self.switcher = InstanceSwitcher(self.manager, self.serializer)
        self.registry = create_default_registry(self.manager, self.switcher, self.serializer)

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        """Handle initialize request."""
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        protocol = select_protocol(requested)
        _write_message({"jsonrpc": "2.0", "id": request_id, "result": initialize_result(protocol)})

    def handle_list_tools(self, request_id: Any) -> None:
        """Handle tools/list request."""
        _write_message({"jsonrpc": "2.0", "id": request_id, "result": {"tools": tools_list()}})

    def _log_call(self, name: str, arguments: dict[str, Any]) -> None:
        """Log tool call with sanitized arguments."""
        logger.info("tool=%s args=%s", name, redact_tool_arguments(name, arguments))

    def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run a tool and turn every failure into a structured ToolResult."""
        self._log_call(name, arguments)
        try:
            if not name:
                return ToolResult.error("Missing tool name")
            if not self.registry.has(name):
                return ToolResult.error(f"Unknown tool: {name}", tool=name)
            return self.registry.dispatch(name, arguments)
        except ExclusivityViolation:
            # Internal invariant breach: log it, never show it to the client.
            logger.exception("tool_call_reentered tool=%s", name)
            return ToolResult.error("Internal error", tool=name)
        except BridgeError as exc:
            logger.info("tool_error tool=%s code=%s reason=%s", name, exc.code, str(exc).splitlines()[0])
            return ToolResult.from_error(exc, tool=name, suggestion=suggestion_for(exc))
        except Exception as exc:
            logger.exception("tool_call_failed")
            return ToolResult.error(str(exc), tool=name)

    def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any]) -> None:
        """Handle tools/call request via registry dispatch."""
        result = self.call_tool(name, arguments)
        _write_message(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"content": result.to_content_list(), "isError": result.is_error},
            }
        )

    def dispatch(self, message: dict[str, Any]) -> None:
        """Dispatch incoming JSON-RPC message to appropriate handler."""
        if not message:
            return

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif method == "notifications/initialized":
            return
        elif method in ("tools/list", "list_tools"):
            self.handle_list_tools(request_id)
        elif method in ("tools/call", "call_tool"):
            name = params.get("name")
            arguments = params.get("arguments") or params.get("args") or {}
            self.handle_call_tool(request_id, name or "", arguments)
        elif method == "ping":
            _write_message({"jsonrpc": "2.0", "id": request_id, "result": {"pong": True}})
        elif request_id is None:
            # Unknown notification: nothing to answer.
            return
        else:
            _write_message(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {"code": -32601, "message": f"Method {method} not found"},
                }
            )

    def shutdown(self) -> None:
        logger.info("shutdown")
        self.manager.shutdown()


def main() -> None:
    """Main entry point for MCP server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    server = McpServer()
    try:
        while True:
            message = _read_message()
            if message is None:
                break
            server.dispatch(message)
    except KeyboardInterrupt:
        logger.info("interrupted")
    finally:
        server.shutdown()


if __name__ == "__main__":
    main()
