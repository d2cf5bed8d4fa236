from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, Request
from starlette.status import HTTP_401_UNAUTHORIZED

logger = logging.getLogger(__name__)


class Unauthorized(HTTPException):
    def __init__(self) -> None:
        super().__init__(status_code=HTTP_401_UNAUTHORIZED, detail="Invalid API key")


async def require_api_key(request: Request, x_api_key: Optional[str] = Header(default=None)) -> None:
    """Shared-secret check; fails closed on a missing or mismatched `x-api-key`."""
    expected = request.app.state.settings.app_api_key
    provided = x_api_key or ""
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.info("Rejected request path=%s reason=%s", request.url.path, "missing key" if not provided else "bad key")
        raise Unauthorized()
