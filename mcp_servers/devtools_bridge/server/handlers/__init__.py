"""
Tool handlers organized by domain.

All handlers follow the signature: (env, arguments) -> ToolResult
"""

from .browsers import BROWSER_HANDLERS

ALL_HANDLERS: dict[str, tuple] = {
    **BROWSER_HANDLERS,
}

__all__ = ["ALL_HANDLERS", "BROWSER_HANDLERS"]
