from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from docgen_service.config import _env_bool, _env_int

logger = logging.getLogger("api.http")


_SENSITIVE_KEYS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "api_key",
    "app_api_key",
    "token",
    "secret",
    "password",
    "openai_api_key",
    "groq_api_key",
    "supabase_service_role_key",
}

# Large payload fields: logged as their size only.
_BULK_KEYS = {"content_base64"}


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for k, v in value.items():
            key = str(k).lower()
            if key in _SENSITIVE_KEYS:
                out[k] = "***"
            elif key in _BULK_KEYS and isinstance(v, str):
                out[k] = f"<{len(v)} chars>"
            else:
                out[k] = _redact(v)
        return out
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def _header(headers: Iterable[Tuple[bytes, bytes]], name: bytes) -> str:
    for k, v in headers:
        if k.lower() == name:
            return v.decode("latin-1", errors="replace")
    return ""


def _decode_headers(headers: Iterable[Tuple[bytes, bytes]]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for k, v in headers:
        ks = k.decode("latin-1").lower()
        out[ks] = "***" if ks in _SENSITIVE_KEYS else v.decode("latin-1", errors="replace")
    return out


def _parse_body(content_type: str, body: bytes) -> Any:
    ct = (content_type or "").lower()
    if "application/json" in ct:
        try:
            return _redact(json.loads(body.decode("utf-8", errors="replace")))
        except ValueError:
            return body.decode("utf-8", errors="replace")
    if ct.startswith("text/event-stream"):
        return f"<sse {len(body)} bytes>"
    if ct.startswith("text/"):
        return body.decode("utf-8", errors="replace")
    if not body:
        return ""
    return "<binary>"


class _Capture:
    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.buf = bytearray()
        self.truncated = False
        self.total = 0

    def add(self, chunk: bytes) -> None:
        self.total += len(chunk)
        if not chunk or self.limit <= 0 or self.truncated:
            return
        remaining = self.limit - len(self.buf)
        if remaining > 0:
            self.buf.extend(chunk[:remaining])
        if len(chunk) > remaining:
            self.truncated = True


class HttpLoggingMiddleware:
    """One JSON log line per request with redacted headers and bodies."""

    def __init__(self, app: ASGIApp, *, log_headers: bool, max_body_bytes: int) -> None:
        self.app = app
        self.log_headers = log_headers
        self.max_body_bytes = max(0, max_body_bytes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        started_at = time.perf_counter()
        req_headers: List[Tuple[bytes, bytes]] = list(scope.get("headers") or [])
        request_id = _header(req_headers, b"x-request-id") or uuid.uuid4().hex[:12]
        req_body = _Capture(self.max_body_bytes)
        res_body = _Capture(self.max_body_bytes)
        res_headers: List[Tuple[bytes, bytes]] = []
        res_status: Optional[int] = None

        async def receive_wrapped() -> Message:
            message = await receive()
            if message.get("type") == "http.request":
                req_body.add(message.get("body") or b"")
            return message

        async def send_wrapped(message: Message) -> None:
            nonlocal res_status, res_headers
            if message.get("type") == "http.response.start":
                res_status = int(message.get("status") or 0)
                res_headers = list(message.get("headers") or [])
            elif message.get("type") == "http.response.body":
                res_body.add(message.get("body") or b"")
            await send(message)

        err: Optional[BaseException] = None
        try:
            await self.app(scope, receive_wrapped, send_wrapped)
        except BaseException as e:  # noqa: BLE001 - log then re-raise
            err = e
            raise
        finally:
            req_ct = _header(req_headers, b"content-type")
            res_ct = _header(res_headers, b"content-type")
            record: Dict[str, Any] = {
                "id": request_id,
                "method": str(scope.get("method") or "").upper(),
                "path": str(scope.get("path") or ""),
                "status": res_status,
                "dur_ms": int((time.perf_counter() - started_at) * 1000),
                "request": {
                    "content_type": req_ct,
                    "headers": _decode_headers(req_headers) if self.log_headers else {},
                    "body": _parse_body(req_ct, bytes(req_body.buf)) if self.max_body_bytes else "",
                    "body_truncated": req_body.truncated,
                },
                "response": {
                    "content_type": res_ct,
                    "headers": _decode_headers(res_headers) if self.log_headers else {},
                    "body": _parse_body(res_ct, bytes(res_body.buf)) if self.max_body_bytes else "",
                    "bytes": res_body.total,
                    "body_truncated": res_body.truncated,
                },
            }
            if err is not None:
                record["error"] = {"type": type(err).__name__, "message": str(err)}

            # One-line JSON for easy grepping in server logs.
            logger.info(json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str))


def install_http_logging(app: Any) -> bool:
    """
    Enable request/response logging via env vars.

    - `DOCGEN_HTTP_LOG=1` enables middleware
    - `DOCGEN_HTTP_LOG_HEADERS=1` logs request/response headers (redacted)
    - `DOCGEN_HTTP_LOG_BODY_MAX_BYTES=4096` caps body bytes captured per request/response
    """
    if not _env_bool("DOCGEN_HTTP_LOG", default=False):
        return False
    log_headers = _env_bool("DOCGEN_HTTP_LOG_HEADERS", default=False)
    max_body_bytes = _env_int("DOCGEN_HTTP_LOG_BODY_MAX_BYTES", default=4096)
    app.add_middleware(HttpLoggingMiddleware, log_headers=log_headers, max_body_bytes=max_body_bytes)
    return True
