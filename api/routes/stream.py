from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from docgen_service.streaming import STREAM_HEADERS, EventChannel, open_event_stream

from api.auth import require_api_key
from api.models import RunRequest
from api.request_adapter import to_workflow_request

router = APIRouter(tags=["run"], dependencies=[Depends(require_api_key)])


@router.post("/run-stream")
async def run_stream(body: RunRequest, request: Request) -> StreamingResponse:
    """
    Streaming run (SSE): `status*`, `token*`, then `done` or `error`.

    Attachment problems are reported as a plain 400 before the stream opens.
    """
    dispatcher = request.app.state.dispatcher
    settings = request.app.state.settings
    wf_request = to_workflow_request(body, request.app.state.attachments)

    async def _produce(channel: EventChannel) -> None:
        await dispatcher.run_stream(wf_request, channel)

    return StreamingResponse(
        open_event_stream(_produce, spawn=dispatcher.spawn, heartbeat_interval=settings.heartbeat_interval),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )
