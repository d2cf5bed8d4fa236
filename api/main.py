from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_500_INTERNAL_SERVER_ERROR


def _repo_root() -> Path:
    # `api/main.py` lives at `<repo>/api/main.py`
    return Path(__file__).resolve().parents[1]


def _ensure_src_on_path() -> None:
    src = _repo_root() / "src"
    if not src.is_dir():
        return
    s = str(src)
    if s not in sys.path:
        sys.path.insert(0, s)


_ensure_src_on_path()

from docgen_service.attachments import AttachmentError, AttachmentRegistry, FileStore, default_file_store  # noqa: E402
from docgen_service.config import Settings  # noqa: E402
from docgen_service.dispatcher import Dispatcher, GuardrailBlocked  # noqa: E402
from docgen_service.guardrails import load_policy  # noqa: E402
from docgen_service.jobs import JobRegistry  # noqa: E402
from docgen_service.workflow import Workflow, load_workflow  # noqa: E402

from api.auth import Unauthorized  # noqa: E402
from api.http_logging import install_http_logging  # noqa: E402
from api.routes import attachments, health, run, stream  # noqa: E402
from api.security import BodyLimitMiddleware, RateLimitMiddleware, SecurityHeadersMiddleware, upload_body_limit  # noqa: E402
from api.utils import error_response, new_request_id  # noqa: E402

logger = logging.getLogger("api")


def create_app(
    settings: Optional[Settings] = None,
    *,
    workflow: Optional[Workflow] = None,
    file_store: Optional[FileStore] = None,
    predictor: Optional[Callable[..., Any]] = None,
) -> FastAPI:
    # Load `.env` + `.env.local` when present (local dev convenience).
    load_dotenv(_repo_root() / ".env", override=False)
    load_dotenv(_repo_root() / ".env.local", override=False)

    settings = settings or Settings.from_env()
    jobs = JobRegistry()
    dispatcher = Dispatcher(
        workflow or load_workflow(settings.workflow_path),
        jobs=jobs,
        policy=load_policy(settings.guardrails_config_path),
        settings=settings,
        predictor=predictor,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        # Let detached runs settle so job records reach a terminal state.
        await dispatcher.drain()

    app = FastAPI(title="docgen-service", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.jobs = jobs
    app.state.dispatcher = dispatcher
    app.state.attachments = AttachmentRegistry(
        store=file_store or default_file_store(settings.storage_bucket),
        max_per_request=settings.max_attachments_per_request,
        max_upload_bytes=settings.max_upload_bytes,
        allowed_mime_types=settings.allowed_mime_types,
    )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = new_request_id("val")
        # Keep server logs useful without dumping full bodies.
        logger.info("400 validation_error requestId=%s path=%s errors=%s", request_id, request.url.path, exc.errors())
        return error_response(
            HTTP_400_BAD_REQUEST,
            "validation_error",
            "Invalid request body",
            request_id=request_id,
            details=[{k: e.get(k) for k in ("loc", "msg", "type")} for e in exc.errors()],
        )

    @app.exception_handler(AttachmentError)
    async def _attachment_error_handler(request: Request, exc: AttachmentError) -> JSONResponse:
        logger.info("400 attachment_error path=%s err=%s", request.url.path, exc)
        return error_response(HTTP_400_BAD_REQUEST, "attachment_error", str(exc))

    @app.exception_handler(GuardrailBlocked)
    async def _guardrail_blocked_handler(request: Request, exc: GuardrailBlocked) -> JSONResponse:
        return error_response(HTTP_400_BAD_REQUEST, "guardrail_blocked", str(exc), report=exc.report)

    @app.exception_handler(Unauthorized)
    async def _unauthorized_handler(request: Request, exc: Unauthorized) -> JSONResponse:
        return error_response(exc.status_code, "unauthorized", str(exc.detail))

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = new_request_id("err")
        logger.error("500 internal_error requestId=%s path=%s err=%r", request_id, request.url.path, exc, exc_info=exc)
        return error_response(HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "Unexpected error", request_id=request_id)

    # Innermost first: the body cap runs closest to the routes, CORS and logging wrap everything.
    app.add_middleware(
        BodyLimitMiddleware,
        max_bytes=settings.max_body_bytes,
        path_limits={"/attachments": max(settings.max_body_bytes, upload_body_limit(settings.max_upload_bytes))},
    )
    app.add_middleware(RateLimitMiddleware, per_minute=settings.rate_limit_per_min, trust_proxy=settings.trust_proxy)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["content-type", "x-api-key", "x-request-id"],
    )
    install_http_logging(app)

    app.include_router(health.router)
    app.include_router(run.router)
    app.include_router(stream.router)
    app.include_router(attachments.router)
    return app
