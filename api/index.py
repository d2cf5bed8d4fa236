"""
ASGI entrypoint: `uvicorn api.index:app`.

Settings are read from the environment when this module is imported, so a missing or
short `APP_API_KEY` stops the process at startup.
"""

from __future__ import annotations

import logging
import os

from api.main import create_app

logging.basicConfig(
    level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
