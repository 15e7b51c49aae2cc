from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DISCOVERY_HOSTS: list[str] = ["webtop1", "webtop2", "webtop3"]

# socat forwarder exposed by the webtop images; Chrome itself only binds 127.0.0.1:9222.
DEFAULT_FORWARDING_PORT = 9999
DEFAULT_DEBUG_PORT = 9222

_STABLE_BINARY_CANDIDATES: list[str] = [
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/opt/google/chrome/chrome",
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/local/bin/chromium",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
    # Snap last (ignores --user-data-dir, SingletonLock issues)
    "/snap/bin/chromium",
]

_CHANNEL_BINARY_CANDIDATES: dict[str, list[str]] = {
    "beta": [
        "/usr/bin/google-chrome-beta",
        "/opt/google/chrome-beta/chrome",
        "/Applications/Google Chrome Beta.app/Contents/MacOS/Google Chrome Beta",
    ],
    "dev": [
        "/usr/bin/google-chrome-unstable",
        "/opt/google/chrome-unstable/chrome",
        "/Applications/Google Chrome Dev.app/Contents/MacOS/Google Chrome Dev",
    ],
    "canary": [
        "/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary",
    ],
}


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _env_float(name: str, default: float) -> float:
    try:
        value = float(os.environ.get(name) or default)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.environ.get(name) or default)
    except ValueError:
        return default
    return value if 0 < value < 65536 else default


def _env_list(name: str, default: list[str] | None = None) -> list[str]:
    raw = os.environ.get(name)
    if raw is None:
        return list(default or [])
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_headers(name: str) -> dict[str, str]:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


def normalize_channel(raw: str | None) -> str:
    channel = (raw or "").strip().lower()
    if channel in {"beta", "dev", "canary"}:
        return channel
    return "stable"


def default_user_data_dir(channel: str = "stable") -> str:
    """Persistent profile location for non-isolated launches, one per release channel."""
    channel = normalize_channel(channel)
    name = "chrome-profile" if channel == "stable" else f"chrome-profile-{channel}"
    return str(Path.home() / ".cache" / "devtools-bridge" / name)


@dataclass
class LaunchOptions:
    """How a local Chrome is started when nothing could be discovered."""

    headless: bool = False
    isolated: bool = False
    extra_args: list[str] = field(default_factory=list)
    accept_insecure_certs: bool = False
    channel: str = "stable"
    binary_path: str | None = None
    user_data_dir: str | None = None
    devtools: bool = False
    proxy_server: str | None = None
    log_file: str | None = None

    def resolved_binary(self) -> str:
        if self.binary_path:
            return expand_path(self.binary_path)
        return BridgeConfig.detect_binary(self.channel)


@dataclass
class BridgeConfig:
    browser_url: str | None = None
    ws_endpoint: str | None = None
    ws_headers: dict[str, str] = field(default_factory=dict)
    discovery_hosts: list[str] = field(default_factory=lambda: list(DEFAULT_DISCOVERY_HOSTS))
    forwarding_port: int = DEFAULT_FORWARDING_PORT
    debug_port: int = DEFAULT_DEBUG_PORT
    docker_binary: str | None = "/usr/bin/docker"
    allow_launch: bool = True
    launch: LaunchOptions = field(default_factory=LaunchOptions)
    discovery_timeout: float = 3.0
    candidate_timeout: float = 4.0
    connect_timeout: float = 12.0
    dial_timeout: float = 8.0
    warmup_timeout: float = 1.0
    protocol_timeout: float = 15.0
    launch_timeout: float = 20.0

    @classmethod
    def detect_binary(cls, channel: str = "stable") -> str:
        env_path = os.environ.get("MCP_BROWSER_BINARY")
        if env_path:
            return expand_path(env_path)
        channel = normalize_channel(channel)
        candidates = _CHANNEL_BINARY_CANDIDATES.get(channel, []) if channel != "stable" else []
        for candidate in [*candidates, *_STABLE_BINARY_CANDIDATES]:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
        # Last resort: rely on PATH lookup
        return "google-chrome"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        docker_raw = os.environ.get("MCP_DOCKER_BINARY")
        if docker_raw is None:
            docker_binary: str | None = "/usr/bin/docker"
        else:
            docker_binary = docker_raw.strip() or None

        user_data_dir = (os.environ.get("MCP_USER_DATA_DIR") or "").strip()
        launch = LaunchOptions(
            headless=_env_flag("MCP_HEADLESS", False),
            isolated=_env_flag("MCP_ISOLATED", False),
            extra_args=_env_list("MCP_BROWSER_FLAGS"),
            accept_insecure_certs=_env_flag("MCP_ACCEPT_INSECURE_CERTS", False),
            channel=normalize_channel(os.environ.get("MCP_BROWSER_CHANNEL")),
            binary_path=(os.environ.get("MCP_BROWSER_BINARY") or "").strip() or None,
            user_data_dir=expand_path(user_data_dir) if user_data_dir else None,
            devtools=_env_flag("MCP_DEVTOOLS", False),
            proxy_server=(os.environ.get("MCP_PROXY_SERVER") or "").strip() or None,
            log_file=(os.environ.get("MCP_LAUNCH_LOG") or "").strip() or None,
        )
        return cls(
            browser_url=(os.environ.get("MCP_BROWSER_URL") or "").strip() or None,
            ws_endpoint=(os.environ.get("MCP_WS_ENDPOINT") or "").strip() or None,
            ws_headers=_env_headers("MCP_WS_HEADERS"),
            discovery_hosts=_env_list("MCP_DISCOVERY_HOSTS", DEFAULT_DISCOVERY_HOSTS),
            forwarding_port=_env_int("MCP_FORWARDING_PORT", DEFAULT_FORWARDING_PORT),
            debug_port=_env_int("MCP_DEBUG_PORT", DEFAULT_DEBUG_PORT),
            docker_binary=docker_binary,
            allow_launch=_env_flag("MCP_ALLOW_LAUNCH", True),
            launch=launch,
            discovery_timeout=_env_float("MCP_DISCOVERY_TIMEOUT", 3.0),
            candidate_timeout=_env_float("MCP_CANDIDATE_TIMEOUT", 4.0),
            connect_timeout=_env_float("MCP_CONNECT_TIMEOUT", 12.0),
            dial_timeout=_env_float("MCP_DIAL_TIMEOUT", 8.0),
            warmup_timeout=_env_float("MCP_WARMUP_TIMEOUT", 1.0),
            protocol_timeout=_env_float("MCP_PROTOCOL_TIMEOUT", 15.0),
            launch_timeout=_env_float("MCP_LAUNCH_TIMEOUT", 20.0),
        )
