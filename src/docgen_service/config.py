from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional


DEFAULT_ALLOWED_MIME_TYPES = [
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/gif",
    "text/plain",
    "text/markdown",
    "text/csv",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
]


class ConfigError(RuntimeError):
    pass


def _env_bool(name: str, default: bool = False) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    if not v:
        return default
    return v in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_csv(name: str) -> List[str]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    app_api_key: str
    max_upload_bytes: int = 20 * 1024 * 1024
    max_attachments_per_request: int = 10
    allowed_mime_types: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES))
    stream_chunk_size: int = 48
    stream_chunk_delay: float = 0.012
    heartbeat_interval: float = 15.0
    guardrails_enabled: bool = True
    guardrails_config_path: Optional[str] = None
    workflow_path: Optional[str] = None
    rate_limit_per_min: int = 60
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    storage_bucket: str = "attachments"
    max_body_bytes: int = 1_000_000
    trust_proxy: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the process environment.

        `APP_API_KEY` is mandatory and must be at least 16 characters; everything else
        has a default. Numeric env vars that fail to parse keep their default.
        """
        api_key = (os.getenv("APP_API_KEY") or "").strip()
        if len(api_key) < 16:
            raise ConfigError("APP_API_KEY must be set and at least 16 chars")

        return cls(
            app_api_key=api_key,
            max_upload_bytes=max(1, _env_int("DOCGEN_MAX_UPLOAD_BYTES", 20 * 1024 * 1024)),
            max_attachments_per_request=max(1, _env_int("DOCGEN_MAX_ATTACHMENTS", 10)),
            allowed_mime_types=_env_csv("DOCGEN_ALLOWED_MIME_TYPES") or list(DEFAULT_ALLOWED_MIME_TYPES),
            stream_chunk_size=max(1, _env_int("DOCGEN_STREAM_CHUNK_SIZE", 48)),
            stream_chunk_delay=max(0, _env_int("DOCGEN_STREAM_CHUNK_DELAY_MS", 12)) / 1000.0,
            heartbeat_interval=float(max(1, _env_int("DOCGEN_HEARTBEAT_SEC", 15))),
            guardrails_enabled=_env_bool("DOCGEN_GUARDRAILS_ENABLED", default=True),
            guardrails_config_path=(os.getenv("DOCGEN_GUARDRAILS_CONFIG") or "").strip() or None,
            workflow_path=(os.getenv("DOCGEN_WORKFLOW") or "").strip() or None,
            rate_limit_per_min=max(0, _env_int("DOCGEN_RATE_LIMIT_PER_MIN", 60)),
            cors_origins=_env_csv("DOCGEN_CORS_ORIGINS") or ["*"],
            storage_bucket=(os.getenv("DOCGEN_STORAGE_BUCKET") or "attachments").strip(),
            max_body_bytes=max(1, _env_int("DOCGEN_MAX_BODY_BYTES", 1_000_000)),
            trust_proxy=_env_bool("DOCGEN_TRUST_PROXY", default=False),
        )


__all__ = ["ConfigError", "DEFAULT_ALLOWED_MIME_TYPES", "Settings", "_env_bool", "_env_csv", "_env_int"]
