"""
Type definitions for MCP server responses and handlers.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import BridgeConfig
    from ..errors import BridgeError
    from ..session_context import SessionContext
    from ..session_manager import ConnectionManager
    from ..switch import InstanceSwitcher


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str
    text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution: structured success or structured failure."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    data: Any | None = None

    @classmethod
    def json(cls, data: Any) -> ToolResult:
        body = json.dumps(data, ensure_ascii=False, indent=2, default=str)
        return cls(content=[ToolContent(type="text", text=body)], data=data)

    @classmethod
    def error(
        cls,
        message: str,
        *,
        tool: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        payload: dict[str, Any] = {"ok": False, "error": message}
        if tool:
            payload["tool"] = tool
        if suggestion:
            payload["suggestion"] = suggestion
        if details:
            payload["details"] = details
        body = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        return cls(content=[ToolContent(type="text", text=body)], is_error=True, data=payload)

    @classmethod
    def from_error(cls, exc: BridgeError, *, tool: str | None = None, suggestion: str | None = None) -> ToolResult:
        details = exc.to_dict()
        message = details.pop("error")
        return cls.error(message, tool=tool, suggestion=suggestion, details=details)

    def to_content_list(self) -> list[dict[str, Any]]:
        """Convert to MCP content list format."""
        return [c.to_dict() for c in self.content]


@dataclass(slots=True)
class ToolEnv:
    """What a handler gets to work with. `session` is set for handlers that require one."""

    config: BridgeConfig
    manager: ConnectionManager
    switcher: InstanceSwitcher
    session: SessionContext | None = None


HandlerFunc = Callable[["ToolEnv", dict[str, Any]], ToolResult]
