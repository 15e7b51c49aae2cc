"""Redaction utilities for logging and trace output.

Browser URLs and ws endpoints may carry credentials (userinfo, `?token=`
query parameters) and configured websocket headers may carry auth. None of
that goes to stderr verbatim.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_KEYS = {
    "secret",
    "password",
    "pass",
    "pwd",
    "token",
    "auth",
    "authorization",
    "cookie",
    "api-key",
    "apikey",
    "x-api-key",
    "x-auth-token",
    "access_token",
}

_URL_KEYS = {"url", "browserurl", "browser_url", "wsendpoint", "ws_endpoint", "advertised"}


def redact_url(url: str) -> str:
    """Drop userinfo and redact sensitive query values. Unchanged URLs are returned as-is."""
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    changed = False
    netloc = parts.netloc
    query = parts.query
    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True

    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        out_pairs: list[tuple[str, str]] = []
        for k, v in pairs:
            if k.lower() in _SENSITIVE_KEYS and v:
                out_pairs.append((k, "<redacted>"))
                changed = True
            else:
                out_pairs.append((k, v))
        query = urlencode(out_pairs, doseq=True)

    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def _redacted_summary(value: Any) -> str:
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    return "<redacted>"


def redact_headers(headers: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in (headers or {}).items():
        lk = str(k).lower()
        if lk in _SENSITIVE_KEYS or lk.startswith("authorization") or lk.startswith("cookie"):
            out[k] = _redacted_summary(v)
        else:
            out[k] = v
    return out


def _redact_any(value: Any, *, key: str | None) -> Any:
    if isinstance(value, dict):
        lk = (key or "").lower()
        if lk == "headers":
            return redact_headers(value)
        return {k: _redact_any(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact_any(v, key=key) for v in value]

    lk = (key or "").lower()
    if isinstance(value, str) and lk in _URL_KEYS:
        return redact_url(value)
    if lk in _SENSITIVE_KEYS:
        return _redacted_summary(value)
    return value


def redact_tool_arguments(tool: str, args: dict[str, Any]) -> dict[str, Any]:  # noqa: ARG001
    """Redact tool arguments for safe logging."""
    return _redact_any(args, key=None)


def redact_jsonrpc_for_log(payload: dict[str, Any]) -> dict[str, Any]:
    msg = dict(payload) if isinstance(payload, dict) else {}
    params = msg.get("params")
    if msg.get("method") in {"tools/call", "call_tool"} and isinstance(params, dict):
        name = params.get("name")
        args = params.get("arguments") or params.get("args")
        if isinstance(args, dict):
            params = dict(params)
            params["arguments"] = redact_tool_arguments(str(name or ""), args)
            params.pop("args", None)
            msg["params"] = params
    return msg
