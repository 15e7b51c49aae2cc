"""
Live instance switching.

Disconnect whatever is active, find the requested browser, and swap the
manager's connection and SessionContext in one step. Runs under the dispatch
guard so no operation can observe a half-replaced connection.

Names are always turned into literal addresses before dialing: Chrome rejects
/json/version requests whose Host header is neither an IP nor localhost.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .dispatch import DispatchSerializer
from .endpoint import Origin, ReachableEndpoint
from .errors import InvalidTargetSpec, SymbolicNameUnresolvable
from .prober import HostHint, expand_hints
from .session_manager import ConnectionManager

logger = logging.getLogger("mcp.devtools_bridge.switch")


@dataclass(frozen=True, slots=True)
class TargetSpec:
    """Where to switch: a symbolic name (+port), a discovery origin, or a ws endpoint."""

    name: str | None = None
    port: int | None = None
    browser_url: str | None = None
    ws_endpoint: str | None = None

    @classmethod
    def from_arguments(cls, arguments: dict[str, Any]) -> TargetSpec:
        def _text(key: str) -> str | None:
            value = arguments.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            return None

        port_raw = arguments.get("port")
        port: int | None = None
        if port_raw is not None and port_raw != "":
            try:
                port = int(port_raw)
            except (TypeError, ValueError) as exc:
                raise InvalidTargetSpec(f"Invalid port: {port_raw!r}", cause=exc) from exc
            if not 0 < port < 65536:
                raise InvalidTargetSpec(f"Invalid port: {port}")

        spec = cls(
            name=_text("container") or _text("name"),
            port=port,
            browser_url=_text("browserUrl") or _text("browser_url"),
            ws_endpoint=_text("wsEndpoint") or _text("ws_endpoint"),
        )
        if not (spec.name or spec.browser_url or spec.ws_endpoint):
            raise InvalidTargetSpec("Provide one of: container, browserUrl, or wsEndpoint")
        return spec

    @property
    def display(self) -> str:
        if self.ws_endpoint:
            return self.ws_endpoint
        if self.name:
            return f"{self.name}:{self.port}" if self.port else self.name
        return str(self.browser_url)


@dataclass(frozen=True, slots=True)
class SwitchResult:
    endpoint: ReachableEndpoint
    label: str | None
    generation: int
    disconnected_previous: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.endpoint.to_dict(),
            "label": self.label,
            "generation": self.generation,
            "disconnectedPrevious": self.disconnected_previous,
        }


class InstanceSwitcher:
    def __init__(self, manager: ConnectionManager, serializer: DispatchSerializer) -> None:
        self.manager = manager
        self.serializer = serializer

    def switch_to(self, spec: TargetSpec) -> SwitchResult:
        with self.serializer.exclusive():
            return self.switch_to_locked(spec)

    def _host_hint(self, spec: TargetSpec) -> HostHint:
        resolve_name = self.manager.resolve_name
        if spec.name:
            address = resolve_name(spec.name)
            if not address:
                raise SymbolicNameUnresolvable(spec.name)
            logger.info('switch_resolve name="%s" address=%s', spec.name, address)
            port = spec.port or self.manager.config.forwarding_port
            return HostHint(host=address, port=port, label=spec.name)

        try:
            origin = Origin.parse(str(spec.browser_url))
        except ValueError as exc:
            raise InvalidTargetSpec(f"Invalid browserUrl: {spec.browser_url}", target=spec.browser_url, cause=exc) from exc
        host = origin.host
        if not origin.is_literal:
            resolved = resolve_name(host)
            if not resolved:
                raise SymbolicNameUnresolvable(host)
            logger.info('switch_resolve name="%s" address=%s', host, resolved)
            host = resolved
        return HostHint(host=host, port=spec.port or origin.port, label=spec.browser_url, scheme=origin.scheme)

    def switch_to_locked(self, spec: TargetSpec) -> SwitchResult:
        """Switch while the caller already holds the dispatch guard."""
        manager = self.manager
        cfg = manager.config
        disconnected = manager.disconnect()

        if spec.ws_endpoint:
            logger.info("switch mode=endpoint target=%s", spec.ws_endpoint)
            endpoint = ReachableEndpoint.direct(spec.ws_endpoint)
            connection = manager.dial(endpoint, cfg.dial_timeout)
            label = None
        else:
            hint = self._host_hint(spec)
            # Already literal; the identity resolver keeps expand_hints from touching DNS again.
            candidates, _dropped = expand_hints(
                [hint],
                forwarding_port=cfg.forwarding_port,
                default_port=cfg.debug_port,
                host_resolver=lambda host, **_kw: host,
            )
            logger.info("switch candidates=%s", [c.display for c in candidates])
            result = manager.probe_candidates(candidates)
            endpoint = result.endpoint
            connection = result.connection
            label = hint.label

        context = manager.install(connection, endpoint, source="switch", label=label)
        return SwitchResult(
            endpoint=endpoint,
            label=label,
            generation=context.generation,
            disconnected_previous=disconnected,
        )


__all__ = ["InstanceSwitcher", "SwitchResult", "TargetSpec"]
