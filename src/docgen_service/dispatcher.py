"""
Execution dispatcher: sync, async (job) and streaming runs over one workflow.

Every run goes through the same `_execute`:
1) guardrail pre-processing (screen input, redact PII in history and workflow fields)
2) the workflow call, with progress reported through `on_progress`
3) closing-section normalization of the result, exactly once
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
from typing import Any, Awaitable, Callable, MutableMapping, Optional, Protocol, Set

import anyio

from docgen_service.config import Settings
from docgen_service.documents import flatten_text, normalize_result
from docgen_service.guardrails import (
    CheckContext,
    GuardrailPolicy,
    Message,
    build_failure_report,
    is_blocked,
    pii_only_policy,
    safe_text,
    screen,
    scrub_deep,
    workflow_fields,
)
from docgen_service.jobs import JobRegistry
from docgen_service.llm import make_lm
from docgen_service.workflow import ProgressEvent, ProgressSink, Workflow, WorkflowRequest, describe_progress

logger = logging.getLogger(__name__)


class GuardrailBlocked(Exception):
    def __init__(self, report: dict) -> None:
        super().__init__("Input blocked by guardrails")
        self.report = report


class EventSink(Protocol):
    closed: bool

    async def emit(self, event: str, data: Any) -> None:
        ...


class Dispatcher:
    def __init__(
        self,
        workflow: Workflow,
        *,
        jobs: JobRegistry,
        policy: GuardrailPolicy,
        settings: Settings,
        guardrail_lm: Any = None,
        predictor: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.workflow = workflow
        self.jobs = jobs
        self.policy = policy
        self.settings = settings
        self._guardrail_lm = guardrail_lm
        self._guardrail_lm_resolved = guardrail_lm is not None or predictor is not None
        self._predictor = predictor
        self._tasks: Set[asyncio.Task] = set()

    # --- background tasks -------------------------------------------------

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Start `coro` detached from the caller; the task is retained until it finishes."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every detached task started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- pipeline ---------------------------------------------------------

    def _check_context(self, request: WorkflowRequest) -> CheckContext:
        if not self._guardrail_lm_resolved:
            # Resolved once; None stays None so model-backed checks drop out.
            self._guardrail_lm = make_lm(module_env_prefix="DSPY_GUARDRAILS", max_tokens=400)
            self._guardrail_lm_resolved = True
        return CheckContext(
            lm=self._guardrail_lm,
            conversation_history=request.conversation(),
            predictor=self._predictor,
        )

    async def _preprocess(self, request: WorkflowRequest) -> WorkflowRequest:
        ctx = self._check_context(request)
        results = await screen(request.input_as_text, self.policy, ctx)
        if is_blocked(results):
            report = build_failure_report(results)
            logger.warning("Input blocked by guardrails conversation=%s report=%s", request.conversation_id, report)
            raise GuardrailBlocked(report)

        request = dataclasses.replace(request, input_as_text=safe_text(results, request.input_as_text))
        if pii_only_policy(self.policy) is None:
            return request

        history = copy.deepcopy(request.history)
        options = copy.deepcopy(request.options)
        await scrub_deep([Message(m) for m in history if isinstance(m, MutableMapping)], self.policy, ctx)
        await scrub_deep(workflow_fields(options), self.policy, ctx)
        return dataclasses.replace(request, history=history, options=options)

    async def _execute(self, request: WorkflowRequest, on_progress: Optional[ProgressSink] = None) -> Any:
        if self.settings.guardrails_enabled:
            request = await self._preprocess(request)
        raw = await self.workflow(request, on_progress)
        return normalize_result(raw)

    # --- entry points -----------------------------------------------------

    async def run_sync(self, request: WorkflowRequest) -> Any:
        return await self._execute(request)

    def run_async(self, request: WorkflowRequest) -> str:
        job_id = self.jobs.create()

        async def _job() -> None:
            self.jobs.update(job_id, status="running")
            try:
                result = await self._execute(request)
            except GuardrailBlocked as e:
                self.jobs.update(job_id, status="error", error=str(e))
            except Exception as e:
                logger.exception("Async run %s failed", job_id)
                self.jobs.update(job_id, status="error", error=str(e) or type(e).__name__)
            else:
                self.jobs.update(job_id, status="done", result=result)

        self.spawn(_job())
        return job_id

    async def run_stream(self, request: WorkflowRequest, sink: EventSink) -> None:
        """
        Stream one run into `sink`: status events per workflow node, then the flattened
        result as `token` chunks, then `done`. Failures end the stream with `error`.
        """

        async def _on_progress(event: ProgressEvent) -> None:
            if not sink.closed:
                await sink.emit("status", describe_progress(event))

        try:
            result = await self._execute(request, _on_progress)
        except GuardrailBlocked as e:
            await sink.emit("error", {"code": "guardrail_blocked", "message": str(e), "report": e.report})
            return
        except Exception as e:
            logger.exception("Streaming run failed conversation=%s", request.conversation_id)
            await sink.emit("error", {"code": "workflow_error", "message": str(e) or type(e).__name__})
            return

        if sink.closed:
            return
        await sink.emit("status", {"phase": "streaming_result", "message": "Streaming result"})

        text = flatten_text(result)
        size = max(1, self.settings.stream_chunk_size)
        for start in range(0, len(text), size):
            if sink.closed:
                logger.info("Stream consumer gone; stopped at %s/%s chars", start, len(text))
                return
            await sink.emit("token", {"text": text[start : start + size]})
            if self.settings.stream_chunk_delay > 0:
                await anyio.sleep(self.settings.stream_chunk_delay)

        await sink.emit("done", result)


__all__ = ["Dispatcher", "EventSink", "GuardrailBlocked"]
