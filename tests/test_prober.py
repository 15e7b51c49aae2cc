"""
Tests for candidate expansion and sequential probing.
"""

from __future__ import annotations

import socket

import pytest

from mcp_servers.devtools_bridge import prober as prober_module
from mcp_servers.devtools_bridge.endpoint import Origin, ReachableEndpoint, resolve
from mcp_servers.devtools_bridge.errors import (
    ConnectRefusedOrUnreachable,
    ConnectTimeout,
    DiscoveryMalformed,
    NoCandidatesSucceeded,
    SymbolicNameUnresolvable,
)
from mcp_servers.devtools_bridge.prober import (
    Candidate,
    DiscoveryHint,
    HostHint,
    candidate_ports,
    dedupe_candidates,
    expand_hints,
    probe,
    resolve_host,
)


def _endpoint_for(origin: Origin, timeout: float) -> ReachableEndpoint:
    return ReachableEndpoint(ws_url=f"ws://{origin.host}:{origin.port}/devtools/browser/x", origin=origin)


# ═══════════════════════════════════════════════════════════════════════════════
# EXPANSION
# ═══════════════════════════════════════════════════════════════════════════════


def test_candidate_ports_priority_and_dedupe() -> None:
    assert candidate_ports(9222, 9999, 9222) == [9222, 9999]
    assert candidate_ports(None, 9999, 9222) == [9999, 9222]
    assert candidate_ports(4444, 9999, 9222) == [4444, 9999, 9222]


def test_dedupe_keeps_first_declared() -> None:
    cands = [
        Candidate("10.0.0.5", 9222, label="a"),
        Candidate("10.0.0.5", 9999, label="a"),
        Candidate("10.0.0.5", 9222, label="b"),
    ]
    out = dedupe_candidates(cands)
    assert [(c.port, c.label) for c in out] == [(9222, "a"), (9999, "a")]


def test_expand_hints_orders_by_hint_then_port() -> None:
    hosts = {"webtop1": "172.18.0.2", "webtop2": "172.18.0.3"}
    candidates, dropped = expand_hints(
        [HostHint("webtop1"), HostHint("webtop2")],
        host_resolver=lambda name, **_: hosts.get(name),
    )
    assert dropped == []
    assert [c.key for c in candidates] == [
        ("172.18.0.2", 9999),
        ("172.18.0.2", 9222),
        ("172.18.0.3", 9999),
        ("172.18.0.3", 9222),
    ]
    assert candidates[0].display == "webtop1 (http://172.18.0.2:9999)"


def test_expand_hints_two_names_same_address_are_deduped() -> None:
    candidates, _ = expand_hints(
        [HostHint("alias-a"), HostHint("alias-b")],
        host_resolver=lambda name, **_: "10.0.0.5",
    )
    assert [c.key for c in candidates] == [("10.0.0.5", 9999), ("10.0.0.5", 9222)]
    assert {c.label for c in candidates} == {"alias-a"}


def test_expand_hints_drops_unresolvable_name() -> None:
    candidates, dropped = expand_hints(
        [HostHint("ghost"), HostHint("webtop1")],
        host_resolver=lambda name, **_: {"webtop1": "172.18.0.2"}.get(name),
    )
    assert [c.host for c in candidates] == ["172.18.0.2", "172.18.0.2"]
    assert len(dropped) == 1
    assert dropped[0][0] == "ghost"
    assert isinstance(dropped[0][1], SymbolicNameUnresolvable)


def test_expand_hints_single_unresolvable_name_raises() -> None:
    with pytest.raises(SymbolicNameUnresolvable) as exc:
        expand_hints([HostHint("ghost")], host_resolver=lambda name, **_: None)
    assert 'Unable to resolve "ghost"' in str(exc.value)


def test_expand_hints_all_unresolvable_aggregates() -> None:
    with pytest.raises(NoCandidatesSucceeded) as exc:
        expand_hints([HostHint("a"), HostHint("b")], host_resolver=lambda name, **_: None)
    assert [target for target, _ in exc.value.failures] == ["a", "b"]


def test_discovery_hint_from_config(config_factory) -> None:
    assert DiscoveryHint.from_config(config_factory()).kind == "none"
    assert DiscoveryHint.from_config(config_factory(browser_url="http://10.0.0.5:9999")).kind == "address"
    hint = DiscoveryHint.from_config(
        config_factory(browser_url="http://10.0.0.5:9999", ws_endpoint="ws://10.0.0.5:9999/devtools/browser/a")
    )
    assert hint.kind == "endpoint"
    assert hint.is_explicit


# ═══════════════════════════════════════════════════════════════════════════════
# HOST RESOLUTION
# ═══════════════════════════════════════════════════════════════════════════════


def test_resolve_host_literal_passthrough() -> None:
    assert resolve_host("10.0.0.5") == "10.0.0.5"
    assert resolve_host("[::1]") == "::1"
    assert resolve_host("") is None


def test_resolve_host_prefers_ipv4(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_getaddrinfo(name, port, type=0):  # noqa: A002
        return [
            (socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("fd00::2", 0, 0, 0)),
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("172.18.0.2", 0)),
        ]

    monkeypatch.setattr(prober_module.socket, "getaddrinfo", fake_getaddrinfo)
    assert resolve_host("webtop1") == "172.18.0.2"


def test_resolve_host_falls_back_to_docker(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail(*args, **kwargs):
        raise socket.gaierror("Name or service not known")

    seen: list[tuple[str, str]] = []

    def fake_docker(name: str, docker_binary: str, timeout: float = 3.0) -> str | None:
        seen.append((name, docker_binary))
        return "172.18.0.9"

    monkeypatch.setattr(prober_module.socket, "getaddrinfo", fail)
    monkeypatch.setattr(prober_module, "_resolve_via_docker", fake_docker)
    assert resolve_host("webtop3", docker_binary="/usr/bin/docker") == "172.18.0.9"
    assert seen == [("webtop3", "/usr/bin/docker")]
    assert resolve_host("webtop3") is None


def test_docker_inspect_requires_running_container(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    docker = tmp_path / "docker"
    docker.write_text("#!/bin/sh\n")
    docker.chmod(0o755)
    answers = {"{{.State.Running}}": "false"}
    monkeypatch.setattr(prober_module, "_docker_inspect", lambda binary, name, template, timeout: answers[template])
    assert prober_module._resolve_via_docker("webtop1", str(docker)) is None

    answers["{{.State.Running}}"] = "true"
    answers["{{range .NetworkSettings.Networks}}{{.IPAddress}} {{end}}"] = " 172.18.0.4 "
    assert prober_module._resolve_via_docker("webtop1", str(docker)) == "172.18.0.4"


# ═══════════════════════════════════════════════════════════════════════════════
# PROBING
# ═══════════════════════════════════════════════════════════════════════════════


def test_probe_first_success_wins_after_failures() -> None:
    cands = [Candidate("10.0.0.1", 9999), Candidate("10.0.0.2", 9999), Candidate("10.0.0.3", 9999)]
    dialed: list[str] = []

    def connect(endpoint: ReachableEndpoint, timeout: float) -> object:
        dialed.append(endpoint.ws_url)
        if "10.0.0.3" not in endpoint.ws_url:
            raise ConnectRefusedOrUnreachable("refused", target=endpoint.ws_url)
        return "conn-c"

    result = probe(cands, connect, per_candidate_timeout=2.0, resolver=_endpoint_for)
    assert result.connection == "conn-c"
    assert result.candidate is cands[2]
    assert [target for target, _ in result.failures] == [cands[0].display, cands[1].display]
    assert len(dialed) == 3


def test_probe_stops_at_first_success() -> None:
    cands = [Candidate("10.0.0.1", 9999), Candidate("10.0.0.2", 9999)]
    dialed: list[str] = []

    def connect(endpoint: ReachableEndpoint, timeout: float) -> object:
        dialed.append(endpoint.ws_url)
        return endpoint.ws_url

    result = probe(cands, connect, per_candidate_timeout=2.0, resolver=_endpoint_for)
    assert result.candidate is cands[0]
    assert dialed == ["ws://10.0.0.1:9999/devtools/browser/x"]


def test_probe_reports_every_failure_in_order() -> None:
    cands = [Candidate("10.0.0.1", 9999), Candidate("10.0.0.2", 9999), Candidate("10.0.0.3", 9222)]

    def connect(endpoint: ReachableEndpoint, timeout: float) -> object:
        raise OSError(111, "Connection refused")

    with pytest.raises(NoCandidatesSucceeded) as exc:
        probe(cands, connect, per_candidate_timeout=2.0, resolver=_endpoint_for)
    err = exc.value
    assert [target for target, _ in err.failures] == [c.display for c in cands]
    assert all(isinstance(e, ConnectRefusedOrUnreachable) for _, e in err.failures)
    assert len(err.reasons) == 3
    for cand in cands:
        assert cand.display in str(err)
    payload = err.to_dict()
    assert payload["code"] == "no_candidates"
    assert [c["target"] for c in payload["candidates"]] == [c.display for c in cands]


def test_probe_budget_is_per_candidate() -> None:
    cands = [Candidate("10.0.0.1", 9999), Candidate("10.0.0.2", 9999)]
    fetch_budgets: list[float] = []
    dial_budgets: list[float] = []

    def resolver(origin: Origin, timeout: float) -> ReachableEndpoint:
        fetch_budgets.append(timeout)
        return _endpoint_for(origin, timeout)

    def connect(endpoint: ReachableEndpoint, timeout: float) -> object:
        dial_budgets.append(timeout)
        raise ConnectTimeout("slow", target=endpoint.ws_url)

    with pytest.raises(NoCandidatesSucceeded):
        probe(cands, connect, per_candidate_timeout=4.0, discovery_timeout=1.5, resolver=resolver)
    assert fetch_budgets == [1.5, 1.5]
    assert all(0 < b <= 4.0 for b in dial_budgets)


def test_probe_skips_candidates_after_deadline() -> None:
    now = [100.0]
    cands = [Candidate("10.0.0.1", 9999), Candidate("10.0.0.2", 9999), Candidate("10.0.0.3", 9999)]
    dialed: list[str] = []

    def connect(endpoint: ReachableEndpoint, timeout: float) -> object:
        dialed.append(endpoint.ws_url)
        now[0] += 10.0
        raise ConnectTimeout("slow", target=endpoint.ws_url)

    with pytest.raises(NoCandidatesSucceeded) as exc:
        probe(
            cands,
            connect,
            per_candidate_timeout=4.0,
            deadline=105.0,
            resolver=_endpoint_for,
            clock=lambda: now[0],
        )
    assert len(dialed) == 1
    failures = exc.value.failures
    assert len(failures) == 3
    assert "skipped" in str(failures[1][1])
    assert "skipped" in str(failures[2][1])


def test_probe_moves_past_non_http_candidate(banner_server) -> None:
    junk_port = banner_server(b"SSH-2.0-OpenSSH_9.0\r\n")
    cands = [Candidate("127.0.0.1", junk_port), Candidate("10.0.0.2", 9999)]

    def resolver(origin: Origin, timeout: float) -> ReachableEndpoint:
        if origin.port == junk_port:
            return resolve(origin, timeout)
        return _endpoint_for(origin, timeout)

    result = probe(cands, lambda endpoint, timeout: endpoint.ws_url, per_candidate_timeout=2.0, resolver=resolver)
    assert result.candidate is cands[1]
    assert [target for target, _ in result.failures] == [cands[0].display]
    assert isinstance(result.failures[0][1], DiscoveryMalformed)


def test_probe_non_http_only_candidate_aggregates(banner_server) -> None:
    port = banner_server(b"\x00\x01garbage\r\n")
    cands = [Candidate("127.0.0.1", port)]
    with pytest.raises(NoCandidatesSucceeded) as exc:
        probe(cands, lambda endpoint, timeout: endpoint.ws_url, per_candidate_timeout=2.0)
    assert isinstance(exc.value.failures[0][1], DiscoveryMalformed)
