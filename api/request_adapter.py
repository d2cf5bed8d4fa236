from __future__ import annotations

from typing import List

from docgen_service.attachments import AttachmentError, AttachmentRecord, AttachmentRegistry
from docgen_service.workflow import WorkflowRequest

from api.models import RunRequest


def resolve_attachments(body: RunRequest, registry: AttachmentRegistry) -> List[AttachmentRecord]:
    """
    Attachments for a run request.

    Explicit `attachment_ids` need a `conversation_id` to be checked against; without ids,
    every attachment of the conversation (if any) is passed along.
    """
    if body.attachment_ids is not None and not body.conversation_id:
        raise AttachmentError("conversation_id is required when attachment_ids is set")
    if not body.conversation_id:
        return []
    return registry.resolve(body.conversation_id, body.attachment_ids)


def to_workflow_request(body: RunRequest, registry: AttachmentRegistry) -> WorkflowRequest:
    """
    Convert the API body into the workflow input.

    This is intentionally small: the API layer stays boring, and all request shaping lives here.
    """
    attachments = resolve_attachments(body, registry)
    return WorkflowRequest(
        input_as_text=body.input_as_text,
        conversation_id=body.conversation_id,
        attachments=[a.model_dump() for a in attachments],
        history=[dict(m) for m in body.history],
        options=dict(body.options),
    )
