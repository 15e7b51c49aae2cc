"""
Browser-instance tool handlers: switch, list, inspect.
"""

from __future__ import annotations

import logging
from typing import Any

from ...endpoint import format_host
from ...errors import BridgeError, StaleSessionError
from ...switch import TargetSpec
from ..types import ToolEnv, ToolResult

logger = logging.getLogger("mcp.devtools_bridge.handlers")


def _page_list(env: ToolEnv) -> list[dict[str, Any]]:
    context = env.manager.context()
    if context is None:
        return []
    try:
        return [page.to_dict() for page in context.pages()]
    except BridgeError as exc:
        logger.info("pages_unavailable reason=%s", exc)
        return []


def handle_switch_browser(env: ToolEnv, args: dict[str, Any]) -> ToolResult:
    spec = TargetSpec.from_arguments(args)
    result = env.switcher.switch_to_locked(spec)
    target = spec.ws_endpoint or result.endpoint.ws_url or spec.display
    return ToolResult.json(
        {
            "ok": True,
            "message": f"Successfully switched to browser at {target}",
            **result.to_dict(),
            "pages": _page_list(env),
        }
    )


def handle_list_browsers(env: ToolEnv, args: dict[str, Any]) -> ToolResult:  # noqa: ARG001
    cfg = env.config
    browsers: list[dict[str, Any]] = []
    for name in cfg.discovery_hosts:
        address = env.manager.resolve_name(name)
        host = format_host(address or name)
        browsers.append(
            {
                "name": name,
                "address": address,
                "url": f"http://{host}:{cfg.forwarding_port}",
                "resolved": address is not None,
            }
        )
    current = env.manager.current()
    return ToolResult.json(
        {
            "current": current.to_dict() if current is not None else None,
            "browsers": browsers,
            "ports": [cfg.forwarding_port, cfg.debug_port],
        }
    )


def handle_get_current_browser(env: ToolEnv, args: dict[str, Any]) -> ToolResult:  # noqa: ARG001
    current = env.manager.current()
    context = env.manager.context()
    payload: dict[str, Any] = {
        "current": current.to_dict() if current is not None else None,
        "state": env.manager.state.value,
        "generation": env.manager.generation,
    }
    if context is not None and context.active:
        try:
            version = context.version()
        except BridgeError as exc:
            logger.info("version_unavailable reason=%s", exc)
            version = {}
        payload["connected"] = True
        payload["browserVersion"] = version.get("product")
        payload["protocolVersion"] = version.get("protocolVersion")
        payload["openPages"] = len(_page_list(env))
    else:
        payload["connected"] = False
    return ToolResult.json(payload)


def handle_list_pages(env: ToolEnv, args: dict[str, Any]) -> ToolResult:  # noqa: ARG001
    session = env.session
    if session is None:
        raise StaleSessionError("list_pages needs an active browser session")
    pages = session.pages()
    return ToolResult.json({"generation": session.generation, "pages": [p.to_dict() for p in pages]})


BROWSER_HANDLERS: dict[str, tuple] = {
    "switch_browser": (handle_switch_browser, False),
    "list_browsers": (handle_list_browsers, False),
    "get_current_browser": (handle_get_current_browser, False),
    "list_pages": (handle_list_pages, True),
}
