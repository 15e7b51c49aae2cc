"""
Connection manager: owner of the single process-wide browser connection.

Policy (decided once per attempt, from configuration):
- live connection present -> reuse it
- explicit ws endpoint / browser URL -> connect only, failures propagate
- nothing explicit -> probe the built-in discovery hosts, then launch locally
  if that is permitted

Nothing else writes the active connection. Callers read it through
`context()` / `current()` and receive a fresh SessionContext whenever it changes.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .config import BridgeConfig, LaunchOptions
from .connection import BrowserConnection
from .endpoint import Origin, ReachableEndpoint, resolve
from .errors import BridgeError, ConnectTimeout, InvalidTargetSpec, NoCandidatesSucceeded, StaleSessionError
from .launcher import BrowserLauncher
from .prober import Candidate, DiscoveryHint, HostHint, ProbeResult, expand_hints, probe, resolve_host
from .session_context import SessionContext

logger = logging.getLogger("mcp.devtools_bridge.session_manager")

ConnectFunc = Callable[[ReachableEndpoint, float], BrowserConnection]


class ConnectionState(str, enum.Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class CurrentInstance:
    """What the active connection is bound to, for "current instance" inspection."""

    endpoint: ReachableEndpoint
    source: str
    label: str | None = None
    connected_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.endpoint.to_dict(),
            "source": self.source,
            "label": self.label,
            "connectedAt": int(self.connected_at * 1000),
        }


class ConnectionManager:
    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        launcher: BrowserLauncher | None = None,
        connect: ConnectFunc | None = None,
        resolver: Callable[[Origin, float], ReachableEndpoint] = resolve,
        host_resolver: Callable[..., str | None] = resolve_host,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.launcher = launcher or BrowserLauncher(self.config.launch, launch_timeout=self.config.launch_timeout)
        self._connect = connect or self._open_connection
        self._resolver = resolver
        self._host_resolver = host_resolver
        self._clock = clock
        self._connection: BrowserConnection | None = None
        self._context: SessionContext | None = None
        self._current: CurrentInstance | None = None
        self._generation = 0
        self._state = ConnectionState.UNCONNECTED

    # ── accessors ────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        if self._state is ConnectionState.CONNECTED and not self._is_live():
            return ConnectionState.DISCONNECTED
        return self._state

    @property
    def connection(self) -> BrowserConnection | None:
        return self._connection

    @property
    def generation(self) -> int:
        return self._generation

    def context(self) -> SessionContext | None:
        return self._context

    def current(self) -> CurrentInstance | None:
        return self._current

    # ── connect / launch ─────────────────────────────────────────────────────

    def _open_connection(self, endpoint: ReachableEndpoint, timeout: float) -> BrowserConnection:
        # Configured headers belong to the configured ws endpoint only.
        headers = self.config.ws_headers if endpoint.ws_url == self.config.ws_endpoint else None
        return BrowserConnection.open(
            endpoint,
            timeout,
            protocol_timeout=self.config.protocol_timeout,
            headers=headers or None,
            devtools=self.config.launch.devtools,
        )

    def _is_live(self) -> bool:
        conn = self._connection
        return conn is not None and conn.connected

    def _live(self) -> BrowserConnection | None:
        conn = self._connection
        if conn is None:
            return None
        if conn.connected:
            return conn
        logger.info("connection_lost ws=%s", conn.ws_url)
        self._connection = None
        self._context = None
        self._state = ConnectionState.DISCONNECTED
        return None

    def dial(self, endpoint: ReachableEndpoint, timeout: float) -> BrowserConnection:
        return self._connect(endpoint, timeout)

    def resolve_name(self, name: str) -> str | None:
        return self._host_resolver(name, docker_binary=self.config.docker_binary)

    def probe_candidates(self, candidates: list[Candidate], *, deadline: float | None = None) -> ProbeResult:
        return probe(
            candidates,
            self._connect,
            per_candidate_timeout=self.config.candidate_timeout,
            discovery_timeout=self.config.discovery_timeout,
            deadline=deadline,
            resolver=self._resolver,
            clock=self._clock,
        )

    def discovery_hints(self, config: BridgeConfig | None = None) -> list[HostHint]:
        cfg = config or self.config
        return [HostHint(host=name, label=name) for name in cfg.discovery_hosts]

    def ensure_connected(self, options: BridgeConfig | None = None, timeout: float | None = None) -> BrowserConnection:
        live = self._live()
        if live is not None:
            return live

        cfg = options or self.config
        hint = DiscoveryHint.from_config(cfg)
        outer = float(timeout or cfg.connect_timeout)
        deadline = self._clock() + outer

        prior = self._state
        self._state = ConnectionState.CONNECTING
        label: str | None = None
        try:
            if hint.kind == "endpoint":
                connection, endpoint = self._connect_endpoint(str(hint.value), cfg, deadline, outer)
                source = "explicit"
            elif hint.kind == "address":
                connection, endpoint = self._connect_address(str(hint.value), cfg, deadline, outer)
                source = "explicit"
            else:
                try:
                    connection, endpoint, label = self._discover(cfg, deadline, outer)
                except BridgeError as exc:
                    if not cfg.allow_launch:
                        raise
                    logger.info("discovery_failed falling_back=launch reason=%s", str(exc).splitlines()[0])
                    self._state = prior
                    return self.ensure_launched(cfg.launch, config=cfg)
                source = "discovery"
        except BaseException:
            if self._state is ConnectionState.CONNECTING:
                self._state = prior
            raise

        self.install(connection, endpoint, source=source, label=label)
        return connection

    def _remaining(self, deadline: float, outer: float, target: str) -> float:
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise ConnectTimeout(f"Timed out connecting to Chrome at {target} after {outer:g}s", target=target)
        return remaining

    def _connect_endpoint(
        self, ws_url: str, cfg: BridgeConfig, deadline: float, outer: float
    ) -> tuple[BrowserConnection, ReachableEndpoint]:
        endpoint = ReachableEndpoint.direct(ws_url)
        budget = min(cfg.dial_timeout, self._remaining(deadline, outer, ws_url))
        logger.info("connect mode=endpoint target=%s", ws_url)
        try:
            return self._connect(endpoint, budget), endpoint
        except ConnectTimeout as exc:
            raise ConnectTimeout(
                f"Timed out connecting to Chrome at {ws_url} after {budget:g}s", target=ws_url, cause=exc
            ) from exc

    def _connect_address(
        self, browser_url: str, cfg: BridgeConfig, deadline: float, outer: float
    ) -> tuple[BrowserConnection, ReachableEndpoint]:
        try:
            origin = Origin.parse(browser_url)
        except ValueError as exc:
            raise InvalidTargetSpec(f"Invalid browser URL: {browser_url}", target=browser_url, cause=exc) from exc
        logger.info("connect mode=address target=%s", origin.url)
        fetch_budget = min(cfg.discovery_timeout, self._remaining(deadline, outer, origin.url))
        endpoint = self._resolver(origin, fetch_budget)
        budget = min(cfg.dial_timeout, self._remaining(deadline, outer, origin.url))
        return self._connect(endpoint, budget), endpoint

    def _discover(
        self, cfg: BridgeConfig, deadline: float, outer: float
    ) -> tuple[BrowserConnection, ReachableEndpoint, str | None]:
        hints = self.discovery_hints(cfg)
        candidates, dropped = expand_hints(
            hints,
            forwarding_port=cfg.forwarding_port,
            default_port=cfg.debug_port,
            docker_binary=cfg.docker_binary,
            host_resolver=self._host_resolver,
        )
        logger.info("discovery candidates=%s dropped=%s", [c.display for c in candidates], [d for d, _ in dropped])
        try:
            result = probe(
                candidates,
                self._connect,
                per_candidate_timeout=cfg.candidate_timeout,
                discovery_timeout=cfg.discovery_timeout,
                deadline=deadline,
                resolver=self._resolver,
                clock=self._clock,
            )
        except NoCandidatesSucceeded as exc:
            # Unresolvable hints are reported alongside the candidate failures.
            if self._clock() >= deadline:
                targets = ", ".join(c.display for c in candidates)
                raise ConnectTimeout(
                    f"Timed out connecting to Chrome at {targets} after {outer:g}s", target=targets, cause=exc
                ) from exc
            raise NoCandidatesSucceeded([*dropped, *exc.failures]) from exc
        return result.connection, result.endpoint, result.candidate.label

    def ensure_launched(self, options: LaunchOptions | None = None, *, config: BridgeConfig | None = None) -> BrowserConnection:
        live = self._live()
        if live is not None:
            return live

        cfg = config or self.config
        if options is not None and options is not self.launcher.options and self.launcher.launched is None:
            self.launcher = BrowserLauncher(options, launch_timeout=cfg.launch_timeout)

        launched = self.launcher.launched
        if launched is not None and launched.process.poll() is None:
            logger.info("launch_reuse port=%s", launched.port)
        else:
            launched = self.launcher.launch()

        origin = Origin(scheme="http", host="127.0.0.1", port=launched.port)
        try:
            endpoint = self._resolver(origin, cfg.discovery_timeout)
            connection = self._connect(endpoint, cfg.dial_timeout)
        except BridgeError:
            self.launcher.stop()
            raise
        self.install(connection, endpoint, source="launch", label="local")
        return connection

    # ── replacement ──────────────────────────────────────────────────────────

    def _warm_up(self, connection: BrowserConnection) -> None:
        try:
            enabled = connection.warm_up(timeout=self.config.warmup_timeout)
        except Exception as exc:  # noqa: BLE001
            logger.debug("warmup_failed ws=%s reason=%s", connection.ws_url, exc)
            return
        if enabled:
            logger.debug("warmup_done ws=%s enabled=%s", connection.ws_url, enabled)

    def install(
        self, connection: BrowserConnection, endpoint: ReachableEndpoint, *, source: str, label: str | None = None
    ) -> SessionContext:
        """Make `connection` the active one and hand out a freshly built SessionContext."""
        self._warm_up(connection)
        old = self._connection
        self._generation += 1
        context = SessionContext(connection=connection, endpoint=endpoint, generation=self._generation)
        self._connection = connection
        self._context = context
        self._current = CurrentInstance(endpoint=endpoint, source=source, label=label)
        self._state = ConnectionState.CONNECTED
        if old is not None and old is not connection:
            self._close_quietly(old)
        logger.info(
            "connected source=%s target=%s ws=%s generation=%s",
            source,
            label or endpoint.display,
            endpoint.ws_url,
            self._generation,
        )
        return context

    def ensure_session(self) -> SessionContext:
        self.ensure_connected()
        context = self._context
        if context is None:
            raise StaleSessionError("No session context for the active connection")
        return context

    @staticmethod
    def _close_quietly(connection: BrowserConnection) -> None:
        try:
            connection.disconnect()
        except Exception as exc:  # noqa: BLE001
            logger.warning("disconnect_failed ws=%s reason=%s", connection.ws_url, exc)

    def disconnect(self) -> bool:
        """Best-effort close of the active connection. Never raises."""
        connection = self._connection
        self._connection = None
        self._context = None
        self._current = None
        if connection is None:
            return False
        logger.info("disconnect ws=%s", connection.ws_url)
        self._close_quietly(connection)
        self._state = ConnectionState.DISCONNECTED
        return True

    def shutdown(self) -> None:
        self.disconnect()
        try:
            self.launcher.stop()
        except Exception as exc:  # noqa: BLE001
            logger.warning("launch_stop_failed reason=%s", exc)


__all__ = ["ConnectionManager", "ConnectionState", "CurrentInstance"]
