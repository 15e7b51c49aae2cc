"""
Tests for live instance switching.
"""

from __future__ import annotations

import pytest

from mcp_servers.devtools_bridge.dispatch import DispatchSerializer
from mcp_servers.devtools_bridge.errors import (
    ExclusivityViolation,
    InvalidTargetSpec,
    NoCandidatesSucceeded,
    StaleSessionError,
    SymbolicNameUnresolvable,
)
from mcp_servers.devtools_bridge.switch import InstanceSwitcher, TargetSpec

WS_A = "ws://10.0.0.9:9222/devtools/browser/aaa"
WS_B = "ws://10.0.0.7:9222/devtools/browser/bbb"


@pytest.fixture
def switched(network, config_factory):
    manager = network.manager(config_factory(ws_endpoint=WS_A))
    switcher = InstanceSwitcher(manager, DispatchSerializer())
    return manager, switcher


def test_target_spec_from_arguments() -> None:
    spec = TargetSpec.from_arguments({"container": " webtop2 ", "port": "9222"})
    assert spec.name == "webtop2"
    assert spec.port == 9222
    assert spec.display == "webtop2:9222"

    spec = TargetSpec.from_arguments({"browserUrl": "http://10.0.0.5:9999"})
    assert spec.browser_url == "http://10.0.0.5:9999"


@pytest.mark.parametrize(
    "args",
    [{}, {"container": ""}, {"container": "webtop2", "port": "abc"}, {"container": "webtop2", "port": 70000}],
)
def test_target_spec_rejects_bad_arguments(args: dict) -> None:
    with pytest.raises(InvalidTargetSpec):
        TargetSpec.from_arguments(args)


def test_switch_to_ws_endpoint_replaces_context(network, switched) -> None:
    manager, switcher = switched
    old_ctx = manager.ensure_session()
    old_conn = manager.connection

    result = switcher.switch_to(TargetSpec(ws_endpoint=WS_B))

    assert result.disconnected_previous is True
    assert result.endpoint.ws_url == WS_B
    new_ctx = manager.context()
    assert new_ctx is not old_ctx
    assert new_ctx.generation == old_ctx.generation + 1 == result.generation
    assert not old_conn.connected
    with pytest.raises(StaleSessionError):
        old_ctx.pages()
    assert new_ctx.pages()
    assert manager.current().source == "switch"


def test_switch_by_container_name(network, switched) -> None:
    manager, switcher = switched
    network.hosts["webtop2"] = "172.18.0.3"
    network.browsers[("172.18.0.3", 9222)] = "two"

    result = switcher.switch_to(TargetSpec(name="webtop2"))

    # Forwarding port first, then the default debug port.
    assert [(h, p) for h, p, _ in network.resolved] == [("172.18.0.3", 9999), ("172.18.0.3", 9222)]
    assert result.endpoint.ws_url == "ws://172.18.0.3:9222/devtools/browser/two"
    assert result.label == "webtop2"
    assert result.disconnected_previous is False
    assert manager.current().label == "webtop2"


def test_switch_by_browser_url_with_hostname(network, switched) -> None:
    manager, switcher = switched
    network.hosts["webtop3"] = "172.18.0.4"
    network.browsers[("172.18.0.4", 9999)] = "three"

    result = switcher.switch_to(TargetSpec(browser_url="http://webtop3:9999"))
    assert result.endpoint.ws_url == "ws://172.18.0.4:9999/devtools/browser/three"
    assert manager.connection.ws_url == result.endpoint.ws_url


def test_switch_to_unresolvable_name(network, switched) -> None:
    manager, switcher = switched
    manager.ensure_connected()
    with pytest.raises(SymbolicNameUnresolvable) as exc:
        switcher.switch_to(TargetSpec(name="nonexistent"))
    assert 'Unable to resolve "nonexistent"' in str(exc.value)
    # The previous connection was released before resolution.
    assert manager.connection is None


def test_switch_failure_lists_candidates(network, switched) -> None:
    _manager, switcher = switched
    network.hosts["webtop2"] = "172.18.0.3"
    with pytest.raises(NoCandidatesSucceeded) as exc:
        switcher.switch_to(TargetSpec(name="webtop2", port=4444))
    targets = [t for t, _ in exc.value.failures]
    assert targets == [
        "webtop2 (http://172.18.0.3:4444)",
        "webtop2 (http://172.18.0.3:9999)",
        "webtop2 (http://172.18.0.3:9222)",
    ]


def test_switch_invalid_browser_url(switched) -> None:
    _manager, switcher = switched
    with pytest.raises(InvalidTargetSpec):
        switcher.switch_to(TargetSpec(browser_url="ftp://somewhere"))


def test_switch_from_guard_holder_fails_fast_instead_of_deadlocking(switched) -> None:
    # Re-entering the guard is a programming error; the boundary never shows it to clients.
    manager, switcher = switched
    with switcher.serializer.exclusive():
        with pytest.raises(ExclusivityViolation):
            switcher.switch_to(TargetSpec(ws_endpoint=WS_B))
    assert manager.connection is None
