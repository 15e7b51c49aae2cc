"""
Shared fakes for the orchestrator tests.

FakeNetwork stands in for the discovery endpoints and websocket dials of a
small fleet of browsers; FakeConnection is what a successful dial returns.
"""

from __future__ import annotations

import os
import socket
from collections.abc import Callable, Iterator
from contextlib import suppress
from threading import Thread
from types import SimpleNamespace
from typing import Any

import pytest

from mcp_servers.devtools_bridge.config import BridgeConfig, LaunchOptions
from mcp_servers.devtools_bridge.connection import PageInfo
from mcp_servers.devtools_bridge.endpoint import Origin, ReachableEndpoint, is_literal_address
from mcp_servers.devtools_bridge.errors import ConnectRefusedOrUnreachable, DiscoveryUnreachable, StaleSessionError
from mcp_servers.devtools_bridge.session_manager import ConnectionManager


class FakeConnection:
    def __init__(self, endpoint: ReachableEndpoint, *, pages: list[PageInfo] | None = None) -> None:
        self.endpoint = endpoint
        self.connected = True
        self.warm_up_calls = 0
        self.warm_up_error: Exception | None = None
        self._pages = pages if pages is not None else [PageInfo("T1", "https://example.com/", "Example")]

    @property
    def ws_url(self) -> str:
        return self.endpoint.ws_url

    def warm_up(self, timeout: float = 1.0) -> list[str]:
        self.warm_up_calls += 1
        if self.warm_up_error is not None:
            raise self.warm_up_error
        return ["Runtime.enable", "Page.enable"]

    def send(self, method: str, params: dict[str, Any] | None = None, **kwargs: Any) -> dict[str, Any]:
        if not self.connected:
            raise StaleSessionError("closed")
        return {"method": method}

    def pages(self) -> list[PageInfo]:
        return list(self._pages)

    def version(self) -> dict[str, Any]:
        return {"product": "Chrome/120.0.6099.109", "protocolVersion": "1.3"}

    def disconnect(self) -> None:
        self.connected = False


class FakeLauncher:
    def __init__(self, options: LaunchOptions, network: FakeNetwork, port: int = 45678) -> None:
        self.options = options
        self.network = network
        self.port = port
        self.launched: Any = None
        self.calls = 0
        self.stops = 0

    def launch(self) -> Any:
        self.calls += 1
        self.network.browsers[("127.0.0.1", self.port)] = "local"
        self.launched = SimpleNamespace(port=self.port, process=SimpleNamespace(poll=lambda: None))
        return self.launched

    def stop(self, *, timeout: float = 2.0) -> bool:
        if self.launched is None:
            return False
        self.stops += 1
        self.launched = None
        return True


class FakeNetwork:
    def __init__(self) -> None:
        self.hosts: dict[str, str] = {}
        # (address, port) -> browser id of a reachable discovery endpoint
        self.browsers: dict[tuple[str, int], str] = {}
        self.refused: set[str] = set()
        self.resolved: list[tuple[str, int, float]] = []
        self.dialed: list[str] = []
        self.connections: list[FakeConnection] = []
        self.now = 1000.0
        self.resolve_cost = 0.0

    def clock(self) -> float:
        return self.now

    def host_resolver(self, name: str, *, docker_binary: str | None = None) -> str | None:
        if is_literal_address(name):
            return name
        return self.hosts.get(name)

    def resolver(self, origin: Origin, timeout: float) -> ReachableEndpoint:
        self.resolved.append((origin.host, origin.port, timeout))
        self.now += self.resolve_cost
        browser = self.browsers.get((origin.host, origin.port))
        if browser is None:
            raise DiscoveryUnreachable(f"Cannot reach {origin.url}/json/version", target=origin.url)
        ws_url = f"ws://{origin.host}:{origin.port}/devtools/browser/{browser}"
        return ReachableEndpoint(ws_url=ws_url, origin=origin, advertised=ws_url, browser="Chrome/120")

    def connect(self, endpoint: ReachableEndpoint, timeout: float) -> FakeConnection:
        self.dialed.append(endpoint.ws_url)
        if endpoint.ws_url in self.refused:
            raise ConnectRefusedOrUnreachable(f"Failed to connect to {endpoint.ws_url}", target=endpoint.ws_url)
        conn = FakeConnection(endpoint)
        self.connections.append(conn)
        return conn

    def manager(self, config: BridgeConfig, launcher: FakeLauncher | None = None) -> ConnectionManager:
        return ConnectionManager(
            config,
            launcher=launcher or FakeLauncher(config.launch, self),
            connect=self.connect,
            resolver=self.resolver,
            host_resolver=self.host_resolver,
            clock=self.clock,
        )


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("MCP_"):
            monkeypatch.delenv(key, raising=False)


def make_config(**overrides: Any) -> BridgeConfig:
    values: dict[str, Any] = {"discovery_hosts": ["webtop1"], "docker_binary": None, "allow_launch": False}
    values.update(overrides)
    return BridgeConfig(**values)


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def fake_launcher_cls():
    return FakeLauncher


@pytest.fixture
def banner_server() -> Iterator[Callable[[bytes], int]]:
    """Plain TCP listeners that read the request and answer with a fixed non-HTTP banner."""
    listeners: list[socket.socket] = []

    def serve(banner: bytes) -> int:
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(4)
        listeners.append(listener)

        def run() -> None:
            while True:
                try:
                    conn, _ = listener.accept()
                except OSError:
                    return
                with conn:
                    conn.settimeout(2.0)
                    data = b""
                    with suppress(OSError):
                        while b"\r\n\r\n" not in data:
                            chunk = conn.recv(4096)
                            if not chunk:
                                break
                            data += chunk
                        conn.sendall(banner)
                        conn.shutdown(socket.SHUT_WR)

        Thread(target=run, daemon=True).start()
        return listener.getsockname()[1]

    yield serve
    for listener in listeners:
        listener.close()
