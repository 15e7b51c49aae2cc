"""
Browser-level CDP connection.

Wraps the browser websocket (`/devtools/browser/<id>`) with the handful of
Target/Browser calls the orchestrator needs: listing top-level pages, the
version string, and the best-effort warm-up after connect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .endpoint import ReachableEndpoint
from .errors import BridgeError, CdpCommandError
from .session_cdp import CdpConnection

logger = logging.getLogger("mcp.devtools_bridge.connection")

_HIDDEN_PREFIXES = ("chrome://", "chrome-extension://", "chrome-untrusted://")


def page_visible(url: str, *, devtools: bool = False) -> bool:
    """Whether a target URL is exposed as a top-level page."""
    if url == "chrome://newtab/":
        return True
    if url.startswith(_HIDDEN_PREFIXES):
        return False
    if not devtools and url.startswith("devtools://"):
        return False
    return True


@dataclass(frozen=True, slots=True)
class PageInfo:
    target_id: str
    url: str
    title: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.target_id, "url": self.url, "title": self.title}


class BrowserConnection:
    """An established control channel plus its currently exposed pages."""

    def __init__(
        self,
        endpoint: ReachableEndpoint,
        *,
        timeout: float = 8.0,
        protocol_timeout: float = 15.0,
        headers: dict[str, str] | None = None,
        devtools: bool = False,
    ) -> None:
        self.endpoint = endpoint
        self.devtools = devtools
        self.cdp = CdpConnection(endpoint.ws_url, timeout=timeout, headers=headers)
        self.cdp.timeout = protocol_timeout

    @classmethod
    def open(cls, endpoint: ReachableEndpoint, timeout: float, **kwargs: Any) -> BrowserConnection:
        return cls(endpoint, timeout=timeout, **kwargs)

    @property
    def ws_url(self) -> str:
        return self.endpoint.ws_url

    @property
    def connected(self) -> bool:
        return self.cdp.connected

    def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return self.cdp.send(method, params, session_id=session_id, timeout=timeout)

    def pages(self) -> list[PageInfo]:
        result = self.send("Target.getTargets")
        infos = result.get("targetInfos")
        pages: list[PageInfo] = []
        if not isinstance(infos, list):
            return pages
        for info in infos:
            if not isinstance(info, dict) or info.get("type") != "page":
                continue
            url = str(info.get("url") or "")
            if not page_visible(url, devtools=self.devtools):
                continue
            pages.append(PageInfo(target_id=str(info.get("targetId") or ""), url=url, title=str(info.get("title") or "")))
        return pages

    def version(self) -> dict[str, Any]:
        return self.send("Browser.getVersion")

    def warm_up(self, timeout: float = 1.0) -> list[str]:
        """Gently wake the first page's session. Returns the domains that were enabled.

        Every step is individually fallible and individually bounded; nothing
        here is allowed to fail the surrounding connect.
        """
        enabled: list[str] = []
        try:
            pages = self.pages()
        except BridgeError as exc:
            logger.debug("warmup_skipped reason=%s", exc)
            return enabled
        if not pages:
            return enabled
        try:
            attached = self.send(
                "Target.attachToTarget",
                {"targetId": pages[0].target_id, "flatten": True},
                timeout=timeout,
            )
        except BridgeError as exc:
            logger.debug("warmup_attach_failed target=%s reason=%s", pages[0].target_id, exc)
            return enabled
        session_id = attached.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            return enabled
        for method in ("Runtime.enable", "Page.enable"):
            try:
                self.send(method, {}, session_id=session_id, timeout=timeout)
            except CdpCommandError as exc:
                logger.debug("warmup_failed method=%s reason=%s", method, exc)
                continue
            enabled.append(method)
        return enabled

    def disconnect(self) -> None:
        self.cdp.close()


__all__ = ["BrowserConnection", "PageInfo", "page_visible"]
