from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.auth import require_api_key
from api.models import AttachmentListOut, AttachmentOut, AttachmentUploadRequest

router = APIRouter(tags=["attachments"], dependencies=[Depends(require_api_key)])


@router.post("/attachments", response_model=AttachmentOut)
async def upload_attachment(body: AttachmentUploadRequest, request: Request) -> AttachmentOut:
    record = await request.app.state.attachments.upload(
        conversation_id=body.conversation_id,
        filename=body.filename,
        mime_type=body.mime_type,
        content_base64=body.content_base64,
    )
    return AttachmentOut(**record.model_dump())


@router.get("/attachments/{conversation_id}", response_model=AttachmentListOut)
async def list_attachments(conversation_id: str, request: Request) -> AttachmentListOut:
    records = request.app.state.attachments.resolve(conversation_id)
    return AttachmentListOut(
        conversation_id=conversation_id,
        attachments=[AttachmentOut(**r.model_dump()) for r in records],
    )
