from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RunRequest(BaseModel):
    """Body of `/run`, `/run-async` and `/run-stream`."""

    model_config = ConfigDict(extra="ignore")

    input_as_text: str = Field(min_length=1, description="Free-form request for the document to generate")
    conversation_id: Optional[str] = Field(
        default=None,
        description="Conversation scope for attachments and history. Required when attachment_ids is set.",
    )
    attachment_ids: Optional[List[str]] = Field(
        default=None,
        description="Attachments to pass to the workflow. Omitted = all attachments of the conversation.",
    )
    history: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Prior conversation messages: [{role, content: [{type, text}]}] or [{role, content: str}]",
    )
    options: Dict[str, Any] = Field(
        default_factory=dict,
        description="Extra workflow inputs; top-level string fields are PII-redacted before the run.",
    )

    @field_validator("input_as_text")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("input_as_text must not be blank")
        return v


class AttachmentUploadRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    filename: str = Field(min_length=1, max_length=255)
    mime_type: str = Field(min_length=1)
    content_base64: str = Field(min_length=1)


class AttachmentOut(BaseModel):
    attachment_id: str
    conversation_id: str
    file_id: str
    filename: str
    mime_type: str
    size_bytes: int
    created_at: str


class AttachmentListOut(BaseModel):
    conversation_id: str
    attachments: List[AttachmentOut] = Field(default_factory=list)


class RunAsyncOut(BaseModel):
    job_id: str
    status: str = "queued"


class JobOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    created_at: str
    updated_at: str
    result: Any = None
    error: Optional[str] = None
