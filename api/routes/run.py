from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from docgen_service.dispatcher import Dispatcher, GuardrailBlocked

from api.auth import require_api_key
from api.contract import contract_enabled, validate_document
from api.models import JobOut, RunAsyncOut, RunRequest
from api.request_adapter import to_workflow_request
from api.utils import error_response, new_request_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["run"], dependencies=[Depends(require_api_key)])


def _dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


@router.post("/run")
async def run(body: RunRequest, request: Request) -> Any:
    """
    Synchronous run: returns the normalized document.
    """
    dispatcher = _dispatcher(request)
    wf_request = to_workflow_request(body, request.app.state.attachments)
    try:
        result = await dispatcher.run_sync(wf_request)
    except GuardrailBlocked:
        raise
    except Exception as e:
        request_id = new_request_id("run")
        logger.exception("Workflow failed requestId=%s", request_id)
        return error_response(
            HTTP_500_INTERNAL_SERVER_ERROR,
            "workflow_error",
            str(e) or "Unexpected error",
            request_id=request_id,
        )

    if contract_enabled() and isinstance(result, dict) and "sections" in result:
        validate_document(result)
    return JSONResponse(content=result)


@router.post("/run-async", response_model=RunAsyncOut)
async def run_async(body: RunRequest, request: Request) -> RunAsyncOut:
    wf_request = to_workflow_request(body, request.app.state.attachments)
    job_id = _dispatcher(request).run_async(wf_request)
    return RunAsyncOut(job_id=job_id, status="queued")


@router.get("/jobs/{job_id}", response_model=JobOut, response_model_exclude_none=True)
async def get_job(job_id: str, request: Request) -> Any:
    record = request.app.state.jobs.get(job_id)
    if record is None:
        return error_response(404, "not_found", "Job not found")
    return record
