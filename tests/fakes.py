"""Test doubles for workflows and guardrail model calls."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from docgen_service.workflow import ProgressSink, WorkflowRequest, run_node


def sample_document() -> Dict[str, Any]:
    return {
        "title": "Service agreement",
        "sections": [
            {"order": 1, "heading": "Scope", "blocks": [{"id": "p1", "type": "paragraph", "text": "Cleaning twice a week."}]},
            {
                "order": 2,
                "heading": "Closing",
                "blocks": [{"id": "closing_statement", "type": "paragraph", "text": "Signed in good faith."}],
            },
            {"order": 3, "heading": "Date", "blocks": [{"id": "local_date", "type": "paragraph", "text": "Berlin, 1 May 2025"}]},
        ],
    }


class RecordingWorkflow:
    """Single `draft` node returning `result`; remembers every request it saw."""

    def __init__(self, result: Any = None, *, error: Optional[Exception] = None) -> None:
        self.result = sample_document() if result is None else result
        self.error = error
        self.requests: List[WorkflowRequest] = []

    async def __call__(self, request: WorkflowRequest, on_progress: Optional[ProgressSink] = None) -> Any:
        self.requests.append(request)

        async def _node() -> Any:
            if self.error is not None:
                raise self.error
            return self.result

        return await run_node("draft", 1, _node, on_progress)


async def echo_workflow(request: WorkflowRequest, on_progress: Optional[ProgressSink] = None) -> Any:
    return {"echo": request.input_as_text}


def make_echo_workflow():
    return echo_workflow


class FakePredictor:
    """Stands in for DSPy predictions, keyed by signature name."""

    def __init__(self, **outputs: Dict[str, Any]) -> None:
        self.outputs = outputs
        self.calls: List[tuple] = []

    def __call__(self, signature_name: str, **inputs: Any) -> Any:
        self.calls.append((signature_name, inputs))
        if signature_name not in self.outputs:
            raise RuntimeError(f"no fake output for {signature_name}")
        return SimpleNamespace(**self.outputs[signature_name])
