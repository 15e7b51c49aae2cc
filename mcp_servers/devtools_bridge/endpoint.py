"""
Endpoint resolution: discovery origin -> independently reachable CDP websocket URL.

Chrome advertises `webSocketDebuggerUrl` from its own point of view. Behind a
socat forwarder or inside a container that is usually `ws://127.0.0.1:9222/...`,
which is useless from outside. The origin we just talked to over HTTP is known
to be reachable, so its host/port replace the advertised ones when needed.
"""

from __future__ import annotations

import http.client
import ipaddress
import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlsplit, urlunsplit
from urllib.request import Request, urlopen

from .errors import DiscoveryMalformed, DiscoveryTimeout, DiscoveryUnreachable

logger = logging.getLogger("mcp.devtools_bridge.endpoint")

VERSION_PATH = "/json/version"

LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})
UNSPECIFIED_HOSTS = frozenset({"0.0.0.0", "::"})

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}


def is_literal_address(host: str) -> bool:
    try:
        ipaddress.ip_address((host or "").strip("[]"))
    except ValueError:
        return False
    return True


def format_host(host: str) -> str:
    host = host.strip("[]")
    if ":" in host:
        return f"[{host}]"
    return host


@dataclass(frozen=True, slots=True)
class Origin:
    """scheme + host + port naming a discovery endpoint."""

    scheme: str
    host: str
    port: int

    @classmethod
    def parse(cls, raw: str) -> Origin:
        text = (raw or "").strip()
        if not text:
            raise ValueError("empty origin")
        if "://" not in text:
            text = f"http://{text}"
        parts = urlsplit(text)
        scheme = (parts.scheme or "http").lower()
        if scheme not in ("http", "https"):
            raise ValueError(f"Unsupported discovery scheme: {scheme}")
        host = parts.hostname or ""
        if not host:
            raise ValueError(f"Missing host in {raw!r}")
        port = parts.port or _DEFAULT_PORTS[scheme]
        return cls(scheme=scheme, host=host, port=int(port))

    @property
    def url(self) -> str:
        return f"{self.scheme}://{format_host(self.host)}:{self.port}"

    @property
    def is_literal(self) -> bool:
        return is_literal_address(self.host)

    def with_host(self, host: str) -> Origin:
        return Origin(scheme=self.scheme, host=host, port=self.port)

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True, slots=True)
class TargetDescriptor:
    ws_url: str
    browser: str = ""
    protocol_version: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ReachableEndpoint:
    """The websocket address actually dialed."""

    ws_url: str
    origin: Origin | None = None
    advertised: str | None = None
    rewritten: bool = False
    browser: str = ""

    @classmethod
    def direct(cls, ws_url: str) -> ReachableEndpoint:
        return cls(ws_url=ws_url, advertised=ws_url)

    @property
    def display(self) -> str:
        return self.origin.url if self.origin is not None else self.ws_url

    def to_dict(self) -> dict[str, Any]:
        return {
            "wsEndpoint": self.ws_url,
            "browserUrl": self.origin.url if self.origin is not None else None,
            "advertised": self.advertised,
            "rewritten": self.rewritten,
            "browser": self.browser or None,
        }


def needs_rewrite(advertised: str, origin: Origin) -> bool:
    try:
        parts = urlsplit(advertised)
        host = (parts.hostname or "").lower()
        port = parts.port or _DEFAULT_PORTS.get(parts.scheme.lower(), 0)
    except ValueError:
        return False
    if not host:
        return False
    if host in LOOPBACK_HOSTS or host in UNSPECIFIED_HOSTS:
        return True
    return int(port) != origin.port


def rewrite_ws_endpoint(advertised: str, origin: Origin) -> str:
    """Point `advertised` at `origin`'s host/port when it is not reachable as-is.

    Already-valid addresses are returned untouched; so is anything unparsable.
    """
    if not needs_rewrite(advertised, origin):
        return advertised
    parts = urlsplit(advertised)
    netloc = f"{format_host(origin.host)}:{origin.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def fetch_target_descriptor(origin: Origin, timeout: float = 3.0) -> TargetDescriptor:
    """GET <origin>/json/version and parse it. Never cached."""
    url = f"{origin.url}{VERSION_PATH}"
    req = Request(url, headers={"User-Agent": "devtools-bridge"})
    try:
        with urlopen(req, timeout=timeout) as resp:  # noqa: S310
            body = resp.read()
    except HTTPError as exc:
        raise DiscoveryMalformed(f"HTTP {exc.code} from {url}", target=origin.url, cause=exc) from exc
    except URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            raise DiscoveryTimeout(f"No response from {url} within {timeout:g}s", target=origin.url, cause=exc) from exc
        raise DiscoveryUnreachable(f"Cannot reach {url}: {exc.reason}", target=origin.url, cause=exc) from exc
    except TimeoutError as exc:
        raise DiscoveryTimeout(f"No response from {url} within {timeout:g}s", target=origin.url, cause=exc) from exc
    except OSError as exc:
        raise DiscoveryUnreachable(f"Cannot reach {url}: {exc}", target=origin.url, cause=exc) from exc
    except http.client.HTTPException as exc:
        # Something answered, but not with HTTP (ssh banner, raw TCP service, cut-off response).
        raise DiscoveryMalformed(f"Non-HTTP response from {url}: {exc!r}", target=origin.url, cause=exc) from exc

    try:
        payload = json.loads(body.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as exc:
        raise DiscoveryMalformed(f"Invalid JSON from {url}", target=origin.url, cause=exc) from exc
    if not isinstance(payload, dict):
        raise DiscoveryMalformed(f"Unexpected payload from {url}", target=origin.url)

    ws_url = payload.get("webSocketDebuggerUrl") or payload.get("webSocketDebuggerUrlLegacy")
    if not isinstance(ws_url, str) or not ws_url.strip():
        raise DiscoveryMalformed(f"No webSocketDebuggerUrl in {url}", target=origin.url)

    return TargetDescriptor(
        ws_url=ws_url.strip(),
        browser=str(payload.get("Browser") or ""),
        protocol_version=str(payload.get("Protocol-Version") or ""),
        raw=payload,
    )


def resolve(origin: Origin, timeout: float = 3.0) -> ReachableEndpoint:
    """Resolve a discovery origin into the websocket address to dial."""
    descriptor = fetch_target_descriptor(origin, timeout=timeout)
    ws_url = rewrite_ws_endpoint(descriptor.ws_url, origin)
    rewritten = ws_url != descriptor.ws_url
    if rewritten:
        logger.info("endpoint_rewrite origin=%s advertised=%s dial=%s", origin.url, descriptor.ws_url, ws_url)
    return ReachableEndpoint(
        ws_url=ws_url,
        origin=origin,
        advertised=descriptor.ws_url,
        rewritten=rewritten,
        browser=descriptor.browser,
    )


__all__ = [
    "LOOPBACK_HOSTS",
    "Origin",
    "ReachableEndpoint",
    "TargetDescriptor",
    "VERSION_PATH",
    "fetch_target_descriptor",
    "format_host",
    "is_literal_address",
    "needs_rewrite",
    "resolve",
    "rewrite_ws_endpoint",
]
