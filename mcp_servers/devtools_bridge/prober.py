"""
Candidate probing.

Hints (container names, hostnames, literal addresses) are expanded into an
ordered list of (address, port) candidates and tried one by one until a
websocket connection sticks. Order is the tie-break: when several candidates
would work, the first declared wins. On total failure every candidate's reason
is reported, not just the last one.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .config import DEFAULT_DEBUG_PORT, DEFAULT_FORWARDING_PORT, BridgeConfig
from .endpoint import Origin, ReachableEndpoint, format_host, is_literal_address, resolve
from .errors import (
    BridgeError,
    ConnectRefusedOrUnreachable,
    ConnectTimeout,
    NoCandidatesSucceeded,
    SymbolicNameUnresolvable,
)

if TYPE_CHECKING:
    from .connection import BrowserConnection

logger = logging.getLogger("mcp.devtools_bridge.prober")

ConnectFunc = Callable[[ReachableEndpoint, float], "BrowserConnection"]
ResolveFunc = Callable[[Origin, float], ReachableEndpoint]


@dataclass(frozen=True, slots=True)
class DiscoveryHint:
    """What the configuration says about where the browser is.

    kind: "endpoint" (explicit ws URL), "address" (explicit browser URL) or "none".
    Explicit hints mean explicit intent: no auto-discovery and no launch fallback.
    """

    kind: str
    value: str | None = None

    @classmethod
    def from_config(cls, config: BridgeConfig) -> DiscoveryHint:
        if config.ws_endpoint:
            return cls("endpoint", config.ws_endpoint)
        if config.browser_url:
            return cls("address", config.browser_url)
        return cls("none")

    @property
    def is_explicit(self) -> bool:
        return self.kind in ("endpoint", "address")


@dataclass(frozen=True, slots=True)
class HostHint:
    """A host to probe: symbolic name or literal address, optionally with a requested port."""

    host: str
    port: int | None = None
    label: str | None = None
    scheme: str = "http"


@dataclass(frozen=True, slots=True)
class Candidate:
    host: str
    port: int
    label: str | None = None
    scheme: str = "http"

    @property
    def key(self) -> tuple[str, int]:
        return (self.host, self.port)

    @property
    def origin(self) -> Origin:
        return Origin(scheme=self.scheme, host=self.host, port=self.port)

    @property
    def display(self) -> str:
        addr = f"{self.scheme}://{format_host(self.host)}:{self.port}"
        if self.label and self.label != self.host:
            return f"{self.label} ({addr})"
        return addr


@dataclass(slots=True)
class ProbeResult:
    connection: BrowserConnection
    endpoint: ReachableEndpoint
    candidate: Candidate
    failures: list[tuple[str, BridgeError]]


def _docker_inspect(docker_binary: str, name: str, template: str, timeout: float) -> str:
    proc = subprocess.run(
        [docker_binary, "inspect", "-f", template, name],
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )
    if proc.returncode != 0:
        return ""
    return (proc.stdout or "").strip()


def _resolve_via_docker(name: str, docker_binary: str, timeout: float = 3.0) -> str | None:
    if not (os.path.isfile(docker_binary) and os.access(docker_binary, os.X_OK)):
        return None
    try:
        if _docker_inspect(docker_binary, name, "{{.State.Running}}", timeout) != "true":
            return None
        raw = _docker_inspect(
            docker_binary, name, "{{range .NetworkSettings.Networks}}{{.IPAddress}} {{end}}", timeout
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("docker_inspect_failed name=%s reason=%s", name, exc)
        return None
    for ip in raw.split():
        if is_literal_address(ip):
            return ip
    return None


def resolve_host(name: str, *, docker_binary: str | None = None) -> str | None:
    """Resolve a symbolic host to a literal address (DNS first, then a running docker container)."""
    name = (name or "").strip().strip("[]")
    if not name:
        return None
    if is_literal_address(name):
        return name
    try:
        infos = socket.getaddrinfo(name, None, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError):
        infos = []
    addrs = [info[4][0] for info in infos if info[0] == socket.AF_INET]
    addrs += [info[4][0] for info in infos if info[0] == socket.AF_INET6]
    if addrs:
        return addrs[0]
    if docker_binary:
        return _resolve_via_docker(name, docker_binary)
    return None


def candidate_ports(
    requested: int | None,
    forwarding_port: int = DEFAULT_FORWARDING_PORT,
    default_port: int = DEFAULT_DEBUG_PORT,
) -> list[int]:
    """[requested, forwarding, default] in priority order, duplicates removed."""
    ports: list[int] = []
    for port in (requested, forwarding_port, default_port):
        if port is not None and port not in ports:
            ports.append(port)
    return ports


def dedupe_candidates(candidates: Iterable[Candidate]) -> list[Candidate]:
    seen: set[tuple[str, int]] = set()
    out: list[Candidate] = []
    for cand in candidates:
        if cand.key in seen:
            continue
        seen.add(cand.key)
        out.append(cand)
    return out


def expand_hints(
    hints: Iterable[HostHint],
    *,
    forwarding_port: int = DEFAULT_FORWARDING_PORT,
    default_port: int = DEFAULT_DEBUG_PORT,
    docker_binary: str | None = None,
    host_resolver: Callable[..., str | None] = resolve_host,
) -> tuple[list[Candidate], list[tuple[str, BridgeError]]]:
    """Expand hints into deduplicated candidates.

    Names that do not resolve are dropped and reported; that is only fatal when
    nothing else is left to try.
    """
    candidates: list[Candidate] = []
    dropped: list[tuple[str, BridgeError]] = []
    for hint in hints:
        address = host_resolver(hint.host, docker_binary=docker_binary)
        if not address:
            logger.info("hint_dropped host=%s reason=unresolvable", hint.host)
            dropped.append((hint.label or hint.host, SymbolicNameUnresolvable(hint.host)))
            continue
        if address != hint.host:
            logger.info("hint_resolved host=%s address=%s", hint.host, address)
        for port in candidate_ports(hint.port, forwarding_port, default_port):
            candidates.append(Candidate(host=address, port=port, label=hint.label or hint.host, scheme=hint.scheme))

    candidates = dedupe_candidates(candidates)
    if not candidates and dropped:
        if len(dropped) == 1:
            raise dropped[0][1]
        raise NoCandidatesSucceeded(dropped, message="No discovery hint could be resolved")
    return candidates, dropped


def probe(
    candidates: list[Candidate],
    connect: ConnectFunc,
    *,
    per_candidate_timeout: float,
    discovery_timeout: float | None = None,
    deadline: float | None = None,
    resolver: ResolveFunc = resolve,
    clock: Callable[[], float] = time.monotonic,
) -> ProbeResult:
    """Try candidates sequentially; first success wins.

    Each candidate gets its own budget (capped by the outer `deadline`), shared
    by the metadata fetch and the websocket dial.
    """
    failures: list[tuple[str, BridgeError]] = []
    for cand in candidates:
        now = clock()
        if deadline is not None and now >= deadline:
            failures.append((cand.display, ConnectTimeout("skipped: outer deadline exceeded", target=cand.display)))
            continue

        budget_end = now + per_candidate_timeout
        if deadline is not None:
            budget_end = min(budget_end, deadline)

        try:
            fetch_timeout = budget_end - now
            if discovery_timeout is not None:
                fetch_timeout = min(fetch_timeout, discovery_timeout)
            endpoint = resolver(cand.origin, fetch_timeout)

            remaining = budget_end - clock()
            if remaining <= 0:
                raise ConnectTimeout(
                    f"Candidate budget of {per_candidate_timeout:g}s used up before dialing", target=endpoint.ws_url
                )
            connection = connect(endpoint, remaining)
        except BridgeError as exc:
            logger.info("candidate_failed candidate=%s reason=%s", cand.display, exc)
            failures.append((cand.display, exc))
            continue
        except OSError as exc:
            logger.info("candidate_failed candidate=%s reason=%s", cand.display, exc)
            failures.append((cand.display, ConnectRefusedOrUnreachable(str(exc), target=cand.display, cause=exc)))
            continue

        logger.info("candidate_connected candidate=%s ws=%s", cand.display, endpoint.ws_url)
        return ProbeResult(connection=connection, endpoint=endpoint, candidate=cand, failures=failures)

    raise NoCandidatesSucceeded(failures)


__all__ = [
    "Candidate",
    "DiscoveryHint",
    "HostHint",
    "ProbeResult",
    "candidate_ports",
    "dedupe_candidates",
    "expand_hints",
    "probe",
    "resolve_host",
]
