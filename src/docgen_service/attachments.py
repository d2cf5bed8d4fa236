"""
Uploaded-file registry, scoped per conversation.

Bytes go to a `FileStore` (Supabase Storage when Supabase is configured, otherwise an
in-memory store); the registry only keeps metadata. An attachment can only be resolved
from the conversation that uploaded it.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence

import anyio
from pydantic import BaseModel
from supabase import Client, create_client

logger = logging.getLogger(__name__)


_client: Optional[Client] = None


class AttachmentError(ValueError):
    pass


class AttachmentRecord(BaseModel):
    attachment_id: str
    conversation_id: str
    file_id: str
    filename: str
    mime_type: str
    size_bytes: int
    created_at: str


class FileStore(Protocol):
    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        ...


class MemoryFileStore:
    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}

    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        file_id = f"mem_{key}"
        self.files[file_id] = data
        return file_id


class SupabaseFileStore:
    def __init__(self, client: Client, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        def _upload() -> None:
            self.client.storage.from_(self.bucket).upload(
                path=key,
                file=data,
                file_options={"content-type": mime_type, "upsert": "false"},
            )

        await anyio.to_thread.run_sync(_upload)
        return f"{self.bucket}/{key}"


def get_supabase_client() -> Optional[Client]:
    """Get or create Supabase client (singleton)."""
    global _client

    if _client is not None:
        return _client

    url = os.getenv("SUPABASE_URL")
    # Use service role key for backend (has full access), fall back to anon key
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")

    if not url or not key:
        return None

    try:
        _client = create_client(url, key)
        return _client
    except Exception as e:
        logger.error("Failed to create Supabase client: %s", e)
        return None


def default_file_store(bucket: str) -> FileStore:
    client = get_supabase_client()
    if client is None:
        logger.info("Supabase not configured; attachments kept in memory")
        return MemoryFileStore()
    return SupabaseFileStore(client, bucket)


def _normalize_mime(mime_type: str) -> str:
    return str(mime_type or "").split(";", 1)[0].strip().lower()


class AttachmentRegistry:
    def __init__(
        self,
        *,
        store: FileStore,
        max_per_request: int = 10,
        max_upload_bytes: int = 20 * 1024 * 1024,
        allowed_mime_types: Sequence[str] = (),
    ) -> None:
        self.store = store
        self.max_per_request = max_per_request
        self.max_upload_bytes = max_upload_bytes
        self.allowed_mime_types = {_normalize_mime(m) for m in allowed_mime_types}
        self._records: Dict[str, AttachmentRecord] = {}
        self._by_conversation: Dict[str, List[str]] = {}

    def register(self, record: AttachmentRecord) -> None:
        self._records[record.attachment_id] = record
        self._by_conversation.setdefault(record.conversation_id, []).append(record.attachment_id)

    def resolve(self, conversation_id: str, ids: Optional[Sequence[str]] = None) -> List[AttachmentRecord]:
        """
        Attachments for a run.

        Without `ids`, everything uploaded under the conversation. With `ids`, each must exist
        and belong to the conversation, and there may be at most `max_per_request` of them.
        """
        if ids is None:
            return [self._records[i] for i in self._by_conversation.get(conversation_id, [])]

        if len(ids) > self.max_per_request:
            raise AttachmentError(f"Too many attachments: {len(ids)} > {self.max_per_request}")

        out: List[AttachmentRecord] = []
        for attachment_id in ids:
            record = self._records.get(attachment_id)
            if record is None or record.conversation_id != conversation_id:
                raise AttachmentError(f"Unknown attachment for this conversation: {attachment_id}")
            out.append(record)
        return out

    async def upload(self, *, conversation_id: str, filename: str, mime_type: str, content_base64: str) -> AttachmentRecord:
        mime = _normalize_mime(mime_type)
        if self.allowed_mime_types and mime not in self.allowed_mime_types:
            raise AttachmentError(f"Unsupported mime_type: {mime_type}")

        encoded = str(content_base64 or "").strip()
        # Reject obviously oversized payloads before decoding them.
        if (len(encoded) * 3) // 4 > self.max_upload_bytes + 3:
            raise AttachmentError(f"File too large (max {self.max_upload_bytes} bytes)")
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise AttachmentError("content_base64 is not valid base64") from None
        if not data:
            raise AttachmentError("File is empty")
        if len(data) > self.max_upload_bytes:
            raise AttachmentError(f"File too large (max {self.max_upload_bytes} bytes)")

        attachment_id = f"att_{uuid.uuid4().hex}"
        file_id = await self.store.put(f"{conversation_id}/{attachment_id}", data, mime)
        record = AttachmentRecord(
            attachment_id=attachment_id,
            conversation_id=conversation_id,
            file_id=file_id,
            filename=filename,
            mime_type=mime,
            size_bytes=len(data),
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.register(record)
        logger.info("Stored attachment %s conversation=%s size=%s", attachment_id, conversation_id, len(data))
        return record


__all__ = [
    "AttachmentError",
    "AttachmentRecord",
    "AttachmentRegistry",
    "FileStore",
    "MemoryFileStore",
    "SupabaseFileStore",
    "default_file_store",
    "get_supabase_client",
]
