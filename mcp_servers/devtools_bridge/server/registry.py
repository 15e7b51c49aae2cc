"""
Tool registry with dispatch table for MCP server.

Every call is admitted through the dispatch serializer first; tools that need
the browser then get the current SessionContext from the connection manager
(which connects, discovers or launches as configured).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..errors import BridgeError
from .types import HandlerFunc, ToolEnv, ToolResult

if TYPE_CHECKING:
    from ..dispatch import DispatchSerializer
    from ..session_manager import ConnectionManager
    from ..switch import InstanceSwitcher

logger = logging.getLogger("mcp.devtools_bridge.registry")

_SUGGESTIONS: dict[str, str] = {
    "no_candidates": (
        "Make sure Chrome runs with --remote-debugging-port (or the socat forwarder is up), "
        "then retry or call switch_browser with an explicit browserUrl"
    ),
    "connect_timeout": "The browser did not answer in time; check network reachability or raise MCP_CONNECT_TIMEOUT",
    "launch_timeout": "The launched Chrome never opened its debugging port; check MCP_LAUNCH_LOG or raise MCP_LAUNCH_TIMEOUT",
    "connect_refused": "Nothing accepted the websocket; verify the port and that Chrome allows remote origins",
    "discovery_timeout": "The /json/version endpoint did not answer; check the host and port",
    "discovery_unreachable": "The discovery endpoint is unreachable; check the host and port",
    "discovery_malformed": "The endpoint answered but is not a Chrome DevTools discovery endpoint",
    "already_running": "Close the other browser using this profile or set MCP_ISOLATED=1",
    "name_unresolvable": "Use an IP address (browserUrl) or check the container/host name",
    "stale_session": "The browser was switched or disconnected; retry the operation",
    "invalid_target": "Provide one of: container, browserUrl, or wsEndpoint",
}


def suggestion_for(exc: BridgeError) -> str | None:
    return _SUGGESTIONS.get(exc.code)


class ToolRegistry:
    """Registry for tool handlers, serialized against the shared connection."""

    def __init__(
        self,
        manager: ConnectionManager,
        switcher: InstanceSwitcher,
        serializer: DispatchSerializer,
    ) -> None:
        self.manager = manager
        self.switcher = switcher
        self.serializer = serializer
        # name -> (handler, requires_session)
        self._handlers: dict[str, tuple[HandlerFunc, bool]] = {}

    def register_many(self, handlers: dict[str, tuple[HandlerFunc, bool]]) -> None:
        self._handlers.update(handlers)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run a tool under exclusive access. BridgeErrors propagate to the caller."""
        handler_info = self._handlers.get(name)
        if handler_info is None:
            raise KeyError(f"Unknown tool: {name}")
        handler, requires_session = handler_info

        with self.serializer.exclusive():
            env = ToolEnv(config=self.manager.config, manager=self.manager, switcher=self.switcher)
            if requires_session:
                env.session = self.manager.ensure_session()
            return handler(env, arguments)

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers.keys())


def create_default_registry(
    manager: ConnectionManager,
    switcher: InstanceSwitcher,
    serializer: DispatchSerializer,
) -> ToolRegistry:
    from .handlers import ALL_HANDLERS

    registry = ToolRegistry(manager, switcher, serializer)
    registry.register_many(ALL_HANDLERS)
    return registry


__all__ = ["ToolRegistry", "create_default_registry", "suggestion_for"]
