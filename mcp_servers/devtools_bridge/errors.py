"""
Typed failures for the connection orchestrator.

Every network-facing step converts its low-level exception into one of these
before it crosses a component boundary, so callers always know which target
was attempted and why it failed.
"""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base error carrying the attempted target and the underlying cause."""

    code = "bridge_error"

    def __init__(self, message: str, *, target: str | None = None, cause: BaseException | str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.target = target
        self.cause = cause

    def __str__(self) -> str:
        if self.target and self.target not in self.message:
            return f"{self.message} (target: {self.target})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "error": self.message}
        if self.target:
            payload["target"] = self.target
        if self.cause is not None:
            payload["cause"] = str(self.cause)
        return payload


class DiscoveryTimeout(BridgeError):
    code = "discovery_timeout"


class DiscoveryMalformed(BridgeError):
    code = "discovery_malformed"


class DiscoveryUnreachable(BridgeError):
    code = "discovery_unreachable"


class ConnectTimeout(BridgeError):
    code = "connect_timeout"


class LaunchTimeout(ConnectTimeout):
    """A launched Chrome never answered on its debugging port in time."""

    code = "launch_timeout"


class ConnectRefusedOrUnreachable(BridgeError):
    code = "connect_refused"


class CdpCommandError(BridgeError):
    code = "cdp_command_error"


class LaunchFailed(BridgeError):
    code = "launch_failed"


class AlreadyRunningConflict(BridgeError):
    code = "already_running"

    def __init__(self, user_data_dir: str, *, cause: BaseException | str | None = None) -> None:
        super().__init__(
            f"The browser is already running for {user_data_dir}. "
            "Use isolation (MCP_ISOLATED=1) to run multiple browser instances.",
            target=user_data_dir,
            cause=cause,
        )
        self.user_data_dir = user_data_dir


class SymbolicNameUnresolvable(BridgeError):
    code = "name_unresolvable"

    def __init__(self, name: str, *, cause: BaseException | str | None = None) -> None:
        super().__init__(f'Unable to resolve "{name}" to an IP address', target=name, cause=cause)
        self.name = name


class NoCandidatesSucceeded(BridgeError):
    """Aggregate failure: every candidate was tried (or skipped) and none connected."""

    code = "no_candidates"

    def __init__(self, failures: list[tuple[str, BridgeError]], *, message: str | None = None) -> None:
        detail = "\n".join(f"- {target}: {err}" for target, err in failures)
        text = message or "Could not connect to any candidate endpoint"
        super().__init__(f"{text}:\n{detail}" if failures else text)
        self.failures = list(failures)
        self.summary = text

    @property
    def reasons(self) -> list[str]:
        return [f"{target}: {err}" for target, err in self.failures]

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["error"] = self.summary
        payload["candidates"] = [{"target": target, **err.to_dict()} for target, err in self.failures]
        return payload


class StaleSessionError(BridgeError):
    code = "stale_session"


class ExclusivityViolation(BridgeError):
    """Internal invariant breach: a guarded operation tried to re-enter the guard."""

    code = "exclusivity_violation"


class InvalidTargetSpec(BridgeError):
    code = "invalid_target"


__all__ = [
    "AlreadyRunningConflict",
    "BridgeError",
    "CdpCommandError",
    "ConnectRefusedOrUnreachable",
    "ConnectTimeout",
    "DiscoveryMalformed",
    "DiscoveryTimeout",
    "DiscoveryUnreachable",
    "ExclusivityViolation",
    "InvalidTargetSpec",
    "LaunchFailed",
    "LaunchTimeout",
    "NoCandidatesSucceeded",
    "StaleSessionError",
    "SymbolicNameUnresolvable",
]
