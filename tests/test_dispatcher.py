from __future__ import annotations

import asyncio
from typing import Any, List, Tuple

import pytest

from docgen_service.config import Settings
from docgen_service.dispatcher import Dispatcher, GuardrailBlocked
from docgen_service.documents import flatten_text
from docgen_service.guardrails import GuardrailPolicy
from docgen_service.guardrails.policy import CheckSpec
from docgen_service.jobs import JobRegistry
from docgen_service.workflow import WorkflowRequest

from fakes import FakePredictor, RecordingWorkflow


class ListSink:
    def __init__(self, close_after_tokens: int = -1) -> None:
        self.events: List[Tuple[str, Any]] = []
        self.closed = False
        self.close_after_tokens = close_after_tokens

    async def emit(self, event: str, data: Any) -> None:
        self.events.append((event, data))
        tokens = sum(1 for name, _ in self.events if name == "token")
        if self.close_after_tokens >= 0 and tokens >= self.close_after_tokens:
            self.closed = True

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


def _dispatcher(workflow, *, checks=(), guardrails_enabled=True, chunk_size=16) -> Dispatcher:
    settings = Settings(
        app_api_key="k" * 16,
        guardrails_enabled=guardrails_enabled,
        stream_chunk_size=chunk_size,
        stream_chunk_delay=0.0,
    )
    policy = GuardrailPolicy(checks=[CheckSpec(name=n, config=c) for n, c in checks])
    return Dispatcher(workflow, jobs=JobRegistry(), policy=policy, settings=settings, predictor=FakePredictor())


PII = ("Contains PII", {"entities": ["EMAIL_ADDRESS"], "block": False})
URL_BLOCK = ("URL Filter", {})


def test_run_sync_returns_normalized_document():
    d = _dispatcher(RecordingWorkflow())
    result = asyncio.run(d.run_sync(WorkflowRequest(input_as_text="Draft a cleaning contract")))
    assert result["sections"][-1]["heading"] == "Closing and signatures"
    assert all(s["heading"] != "Date" for s in result["sections"])


def test_preprocessing_redacts_input_history_and_options():
    wf = RecordingWorkflow()
    d = _dispatcher(wf, checks=[PII])
    request = WorkflowRequest(
        input_as_text="Contract for jane.doe@example.com",
        history=[{"role": "user", "content": "I am bob@example.org"}],
        options={"client": "ann@example.net", "pages": 2},
    )
    asyncio.run(d.run_sync(request))

    seen = wf.requests[0]
    assert seen.input_as_text == "Contract for <EMAIL_ADDRESS>"
    assert seen.history == [{"role": "user", "content": "I am <EMAIL_ADDRESS>"}]
    assert seen.options == {"client": "<EMAIL_ADDRESS>", "pages": 2}
    # The caller's request is left alone.
    assert request.options["client"] == "ann@example.net"


def test_preprocessing_keeps_history_structure():
    wf = RecordingWorkflow()
    d = _dispatcher(wf, checks=[PII])
    history = [
        {"role": "user", "name": "bob", "content": [{"type": "input_image", "image_url": "https://x.example/y.png"}]},
        {"role": "user", "content": [{"type": "input_text", "text": "cc ann@example.net"}, {"type": "input_file", "file_id": "f1"}]},
    ]
    asyncio.run(d.run_sync(WorkflowRequest(input_as_text="x", history=history)))

    assert wf.requests[0].history == [
        {"role": "user", "name": "bob", "content": [{"type": "input_image", "image_url": "https://x.example/y.png"}]},
        {"role": "user", "content": [{"type": "input_text", "text": "cc <EMAIL_ADDRESS>"}, {"type": "input_file", "file_id": "f1"}]},
    ]
    assert history[1]["content"][0]["text"] == "cc ann@example.net"


def test_history_untouched_without_pii_check():
    wf = RecordingWorkflow()
    d = _dispatcher(wf, checks=[("URL Filter", {"block": False})])
    history = [{"role": "user", "name": "bob", "content": [{"type": "input_image", "image_url": "https://x.example/y.png"}]}]
    asyncio.run(d.run_sync(WorkflowRequest(input_as_text="x", history=history)))
    assert wf.requests[0].history is history


def test_guardrail_model_is_resolved_once(monkeypatch):
    calls = []

    def fake_make_lm(**kwargs):
        calls.append(kwargs)
        return None

    monkeypatch.setattr("docgen_service.dispatcher.make_lm", fake_make_lm)
    settings = Settings(app_api_key="k" * 16, stream_chunk_delay=0.0)
    policy = GuardrailPolicy(checks=[CheckSpec(name="URL Filter", config={"block": False})])
    d = Dispatcher(RecordingWorkflow(), jobs=JobRegistry(), policy=policy, settings=settings)

    asyncio.run(d.run_sync(WorkflowRequest(input_as_text="x")))
    asyncio.run(d.run_sync(WorkflowRequest(input_as_text="y")))
    assert len(calls) == 1


def test_guardrails_disabled_passes_input_through():
    wf = RecordingWorkflow()
    d = _dispatcher(wf, checks=[PII], guardrails_enabled=False)
    asyncio.run(d.run_sync(WorkflowRequest(input_as_text="jane.doe@example.com")))
    assert wf.requests[0].input_as_text == "jane.doe@example.com"


def test_blocked_input_never_reaches_workflow():
    wf = RecordingWorkflow()
    d = _dispatcher(wf, checks=[URL_BLOCK])
    with pytest.raises(GuardrailBlocked) as exc:
        asyncio.run(d.run_sync(WorkflowRequest(input_as_text="open http://evil.test")))
    assert exc.value.report["url_filter"]["failed"] is True
    assert wf.requests == []


def test_run_async_moves_job_to_done():
    d = _dispatcher(RecordingWorkflow())

    async def main() -> str:
        job_id = d.run_async(WorkflowRequest(input_as_text="x"))
        assert d.jobs.get(job_id).status == "queued"
        await d.drain()
        return job_id

    job = d.jobs.get(asyncio.run(main()))
    assert job.status == "done"
    assert job.result["sections"][-1]["blocks"][0]["id"] == "closing_statement"
    assert job.error is None


def test_run_async_records_workflow_error():
    d = _dispatcher(RecordingWorkflow(error=RuntimeError("model exploded")))

    async def main() -> str:
        job_id = d.run_async(WorkflowRequest(input_as_text="x"))
        await d.drain()
        return job_id

    job = d.jobs.get(asyncio.run(main()))
    assert job.status == "error"
    assert job.error == "model exploded"
    assert job.result is None


def test_stream_event_order_and_token_text():
    d = _dispatcher(RecordingWorkflow(), chunk_size=10)
    sink = ListSink()
    asyncio.run(d.run_stream(WorkflowRequest(input_as_text="x"), sink))

    names = sink.names()
    assert names[:3] == ["status", "status", "status"]
    assert [data["phase"] for name, data in sink.events if name == "status"] == [
        "node_started",
        "node_completed",
        "streaming_result",
    ]
    assert names[-1] == "done"
    assert set(names[3:-1]) == {"token"}

    done = sink.events[-1][1]
    tokens = [data["text"] for name, data in sink.events if name == "token"]
    assert all(len(t) <= 10 for t in tokens)
    assert "".join(tokens) == flatten_text(done)

    completed = sink.events[1][1]
    assert completed["node"] == "draft"
    assert "duration_ms" in completed
    assert completed["message"].startswith("draft completed")


def test_stream_reports_workflow_failure():
    d = _dispatcher(RecordingWorkflow(error=RuntimeError("model exploded")))
    sink = ListSink()
    asyncio.run(d.run_stream(WorkflowRequest(input_as_text="x"), sink))

    assert sink.names() == ["status", "status", "error"]
    assert sink.events[1][1]["phase"] == "node_failed"
    assert sink.events[2][1] == {"code": "workflow_error", "message": "model exploded"}


def test_stream_reports_guardrail_block_with_report():
    d = _dispatcher(RecordingWorkflow(), checks=[URL_BLOCK])
    sink = ListSink()
    asyncio.run(d.run_stream(WorkflowRequest(input_as_text="see https://evil.test"), sink))

    assert sink.names() == ["error"]
    payload = sink.events[0][1]
    assert payload["code"] == "guardrail_blocked"
    assert payload["report"]["url_filter"]["blocked"] == ["https://evil.test"]


def test_stream_stops_when_consumer_goes_away():
    d = _dispatcher(RecordingWorkflow(), chunk_size=5)
    sink = ListSink(close_after_tokens=2)
    asyncio.run(d.run_stream(WorkflowRequest(input_as_text="x"), sink))

    assert sink.names().count("token") == 2
    assert "done" not in sink.names()
