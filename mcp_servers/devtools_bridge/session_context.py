"""
Capability view bound to one browser connection.

A SessionContext is never patched in place. When the connection changes the
manager builds a new one and hands out that reference; whoever still holds the
old context finds it inert (every call raises StaleSessionError) because its
connection was disconnected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .connection import BrowserConnection, PageInfo
from .endpoint import ReachableEndpoint
from .errors import StaleSessionError


@dataclass(frozen=True, slots=True)
class SessionContext:
    connection: BrowserConnection
    endpoint: ReachableEndpoint
    generation: int

    @property
    def active(self) -> bool:
        return self.connection.connected

    def _require_active(self) -> BrowserConnection:
        if not self.connection.connected:
            raise StaleSessionError(
                f"Session generation {self.generation} is no longer bound to a live connection",
                target=self.endpoint.ws_url,
            )
        return self.connection

    def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Forward a pre-formed CDP command over the bound connection."""
        return self._require_active().send(method, params, session_id=session_id, timeout=timeout)

    def pages(self) -> list[PageInfo]:
        return self._require_active().pages()

    def version(self) -> dict[str, Any]:
        return self._require_active().version()


__all__ = ["SessionContext"]
