"""
HTTP hardening middleware: security headers, per-client rate limiting, request body cap.

Plain ASGI middleware (same shape as `api.http_logging`) so streaming responses pass
through untouched.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Dict, List, Optional, Tuple

from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)


SECURITY_HEADERS: List[Tuple[bytes, bytes]] = [
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"SAMEORIGIN"),
    (b"referrer-policy", b"no-referrer"),
    (b"x-dns-prefetch-control", b"off"),
    (b"cross-origin-resource-policy", b"same-origin"),
    (b"strict-transport-security", b"max-age=15552000; includeSubDomains"),
]


async def _send_json(send: Send, status: int, body: Dict[str, str], headers: Optional[List[Tuple[bytes, bytes]]] = None) -> None:
    payload = json.dumps(body).encode("utf-8")
    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(payload)).encode("latin-1")),
                *(headers or []),
            ],
        }
    )
    await send({"type": "http.response.body", "body": payload})


class SecurityHeadersMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        async def send_wrapped(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = list(message.get("headers") or [])
                present = {k.lower() for k, _ in headers}
                headers.extend((k, v) for k, v in SECURITY_HEADERS if k not in present)
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_wrapped)


def _client_key(scope: Scope, trust_proxy: bool = False) -> str:
    """Socket peer address; the first `x-forwarded-for` hop only when a trusted proxy sets it."""
    if trust_proxy:
        for k, v in scope.get("headers") or []:
            if k.lower() == b"x-forwarded-for":
                hop = v.decode("latin-1").split(",", 1)[0].strip()
                if hop:
                    return hop
    client = scope.get("client")
    return str(client[0]) if client else "unknown"


class RateLimitMiddleware:
    """Fixed one-minute window per client address; 0 disables limiting."""

    def __init__(self, app: ASGIApp, *, per_minute: int, window_sec: float = 60.0, trust_proxy: bool = False) -> None:
        self.app = app
        self.trust_proxy = trust_proxy
        self.per_minute = per_minute
        self.window_sec = window_sec
        self._windows: Dict[str, Tuple[float, int]] = {}

    def _hit(self, key: str) -> Tuple[int, float]:
        now = time.monotonic()
        started, count = self._windows.get(key, (now, 0))
        if now - started >= self.window_sec:
            started, count = now, 0
        count += 1
        self._windows[key] = (started, count)
        if len(self._windows) > 10_000:
            self._windows = {k: w for k, w in self._windows.items() if now - w[0] < self.window_sec}
        return count, self.window_sec - (now - started)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http" or self.per_minute <= 0:
            await self.app(scope, receive, send)
            return

        key = _client_key(scope, self.trust_proxy)
        count, reset_in = self._hit(key)
        remaining = max(0, self.per_minute - count)
        limit_headers = [
            (b"x-ratelimit-limit", str(self.per_minute).encode("latin-1")),
            (b"x-ratelimit-remaining", str(remaining).encode("latin-1")),
            (b"x-ratelimit-reset", str(max(0, int(reset_in))).encode("latin-1")),
        ]
        if count > self.per_minute:
            logger.warning("Rate limit exceeded client=%s path=%s", key, scope.get("path"))
            await _send_json(
                send,
                429,
                {"error": "rate_limited", "message": f"Rate limit exceeded, retry in {max(1, int(reset_in))} seconds"},
                [*limit_headers, (b"retry-after", str(max(1, int(reset_in))).encode("latin-1"))],
            )
            return

        async def send_wrapped(message: Message) -> None:
            if message.get("type") == "http.response.start":
                message = {**message, "headers": [*(message.get("headers") or []), *limit_headers]}
            await send(message)

        await self.app(scope, receive, send_wrapped)


class _BodyTooLarge(Exception):
    pass


def upload_body_limit(max_upload_bytes: int, overhead: int = 64 * 1024) -> int:
    """Largest JSON upload body that can still carry `max_upload_bytes` of base64 content."""
    return -(-max_upload_bytes * 4 // 3) + overhead


class BodyLimitMiddleware:
    """
    Reject request bodies above `max_bytes` with 413.

    `path_limits` maps exact paths to their own cap.
    """

    def __init__(self, app: ASGIApp, *, max_bytes: int, path_limits: Optional[Dict[str, int]] = None) -> None:
        self.app = app
        self.max_bytes = max_bytes
        self.path_limits = dict(path_limits or {})

    async def _reject(self, send: Send, limit: int) -> None:
        await _send_json(send, 413, {"error": "bad_request", "message": f"Request body is too large (max {limit} bytes)"})

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        limit = self.path_limits.get(scope.get("path") or "", self.max_bytes)
        for k, v in scope.get("headers") or []:
            if k.lower() == b"content-length":
                try:
                    declared = int(v)
                except ValueError:
                    declared = 0
                if declared > limit:
                    await self._reject(send, limit)
                    return

        seen = 0
        started = False

        async def receive_wrapped() -> Message:
            nonlocal seen
            message = await receive()
            if message.get("type") == "http.request":
                seen += len(message.get("body") or b"")
                if seen > limit:
                    raise _BodyTooLarge()
            return message

        async def send_wrapped(message: Message) -> None:
            nonlocal started
            if message.get("type") == "http.response.start":
                started = True
            await send(message)

        try:
            await self.app(scope, receive_wrapped, send_wrapped)
        except _BodyTooLarge:
            if started:
                raise
            await self._reject(send, limit)


__all__ = ["BodyLimitMiddleware", "RateLimitMiddleware", "SecurityHeadersMiddleware", "upload_body_limit"]
