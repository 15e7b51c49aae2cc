"""Raw CDP websocket channel (websocket-client)."""

from __future__ import annotations

import json
import socket
import time
from contextlib import suppress
from typing import Any

import websocket

from .errors import CdpCommandError, ConnectRefusedOrUnreachable, ConnectTimeout


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)):
        return True
    return "timed out" in str(exc).lower()


def dial(ws_url: str, *, timeout: float, headers: dict[str, str] | None = None) -> websocket.WebSocket:
    """Open a websocket within `timeout`, converting failures to typed errors."""
    header = [f"{k}: {v}" for k, v in (headers or {}).items()] or None
    try:
        return websocket.create_connection(ws_url, timeout=timeout, header=header, suppress_origin=True)
    except Exception as exc:  # noqa: BLE001
        if _is_timeout(exc):
            raise ConnectTimeout(
                f"Timed out connecting to Chrome after {timeout:g}s", target=ws_url, cause=exc
            ) from exc
        raise ConnectRefusedOrUnreachable(f"Failed to connect to {ws_url}: {exc}", target=ws_url, cause=exc) from exc


class CdpConnection:
    """Low-level CDP WebSocket connection."""

    def __init__(self, ws_url: str, timeout: float = 5.0, *, headers: dict[str, str] | None = None):
        self.ws = dial(ws_url, timeout=timeout, headers=headers)
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        self._closed = False

    @property
    def connected(self) -> bool:
        if self._closed:
            return False
        return bool(getattr(self.ws, "connected", False))

    def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send CDP command and wait for its response."""
        if self._closed:
            raise CdpCommandError(f"{method}: connection is closed", target=self.ws_url)

        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params
        if session_id:
            msg["sessionId"] = session_id

        budget = float(timeout if timeout is not None else self.timeout)
        try:
            # Bounded send; recv() enforces the full deadline.
            self.ws.settimeout(min(2.0, max(0.5, budget)))
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise CdpCommandError(f"{method}: send failed: {exc}", target=self.ws_url, cause=exc) from exc

        return self._recv_until(msg_id, method, budget)

    def _recv_until(self, expected_id: int, method: str, budget: float) -> dict[str, Any]:
        deadline = time.monotonic() + budget
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CdpCommandError(f"{method} timed out after {budget:g}s", target=self.ws_url)

            # Small socket timeout so our own deadline is enforced reliably.
            try:
                self.ws.settimeout(min(0.5, remaining))
                raw = self.ws.recv()
            except Exception as exc:  # noqa: BLE001
                if _is_timeout(exc):
                    continue
                raise CdpCommandError(f"{method}: {exc}", target=self.ws_url, cause=exc) from exc

            try:
                data = json.loads(raw)
            except (TypeError, json.JSONDecodeError):
                continue
            if not isinstance(data, dict):
                continue

            # CDP events and stale replies are not consumed here.
            if data.get("id") == expected_id:
                if "error" in data:
                    raise CdpCommandError(f"{method}: {data['error']}", target=self.ws_url)
                result = data.get("result")
                return result if isinstance(result, dict) else {}

    def abort(self) -> None:
        """Hard break of the underlying socket."""
        sock = getattr(self.ws, "sock", None)
        if sock is not None:
            with suppress(Exception):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(Exception):
                sock.close()

    def close(self) -> None:
        """Close the WebSocket connection."""
        self._closed = True
        # Raw-socket shutdown; websocket-client close() can hang on a wedged peer.
        self.abort()


__all__ = ["CdpConnection", "dial"]
