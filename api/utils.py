from __future__ import annotations

import time
import uuid
from typing import Any, Optional

from fastapi.responses import JSONResponse


def new_request_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def error_response(status_code: int, error: str, message: str, *, request_id: Optional[str] = None, **extra: Any) -> JSONResponse:
    """`{error, message}` body used by every failure path of the API."""
    content: dict = {"error": error, "message": message}
    if request_id:
        content["requestId"] = request_id
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)
