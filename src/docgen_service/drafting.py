"""
Built-in drafting workflow (DSPy).

Two nodes: `outline` plans sections from the request, `draft` writes the document JSON.
Used when `DOCGEN_WORKFLOW` does not point at another workflow. Output shape is a
`Document` dict; the dispatcher normalizes it afterwards like any other workflow result.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional

import anyio
import dspy

from docgen_service.llm import make_lm
from docgen_service.workflow import ProgressSink, WorkflowNotConfigured, WorkflowRequest, run_node


class OutlineDocument(dspy.Signature):
    """
    Plan a formal document for the request. Return JSON: {"title": str, "sections": [{"heading": str, "purpose": str}]}.
    The last section is the closing section (heading contains "Closing").
    """

    request_text: str = dspy.InputField(desc="What the user asked for.")
    attachments_json: str = dspy.InputField(desc="Compact JSON list of attached file metadata.")

    outline_json: str = dspy.OutputField(desc="JSON only. No prose, no markdown, no code fences.")


class DraftDocument(dspy.Signature):
    """
    Write the document from the outline. Return JSON:
    {"title": str, "sections": [{"order": int, "heading": str, "blocks": [
      {"id": str, "type": "paragraph"|"list"|"table"|"quote"|"signatures", "text": str,
       "ordered": bool, "items": [str], "rows": [[str]], "source": "draft"}]}]}
    The closing section holds a block with id "closing_statement" and a "signatures" block.
    """

    request_text: str = dspy.InputField(desc="What the user asked for.")
    outline_json: str = dspy.InputField(desc="Outline JSON from the planner.")

    document_json: str = dspy.OutputField(desc="JSON only. No prose, no markdown, no code fences.")


def _best_effort_parse_json(text: str) -> Any:
    t = str(text or "").strip()
    if t.startswith("```"):
        t = t.strip("`")
        if t.lower().startswith("json"):
            t = t[4:]
    try:
        return json.loads(t)
    except ValueError:
        return None


def _compact_json(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=True, sort_keys=True)


class DraftingWorkflow:
    def __init__(self, lm: Optional[Any] = None) -> None:
        self._lm = lm
        self.outline = dspy.Predict(OutlineDocument)
        self.draft = dspy.Predict(DraftDocument)

    def _resolve_lm(self) -> Any:
        if self._lm is None:
            max_tokens = int(os.getenv("DSPY_WORKFLOW_MAX_TOKENS") or "4000")
            self._lm = make_lm(module_env_prefix="DSPY_WORKFLOW", max_tokens=max_tokens, temperature=0.3)
        if self._lm is None:
            raise WorkflowNotConfigured("DSPy LM not configured")
        return self._lm

    async def __call__(self, request: WorkflowRequest, on_progress: Optional[ProgressSink] = None) -> Dict[str, Any]:
        lm = self._resolve_lm()
        attachments_json = _compact_json(
            [{"filename": a.get("filename"), "mime_type": a.get("mime_type")} for a in request.attachments]
        )

        def _outline() -> Any:
            with dspy.context(lm=lm):
                return self.outline(request_text=request.input_as_text, attachments_json=attachments_json)

        async def _outline_node() -> str:
            pred = await anyio.to_thread.run_sync(_outline)
            raw = str(getattr(pred, "outline_json", "") or "")
            if not isinstance(_best_effort_parse_json(raw), dict):
                raise ValueError("Outline step returned invalid JSON")
            return raw

        outline_json = await run_node("outline", 1, _outline_node, on_progress)

        def _draft() -> Any:
            with dspy.context(lm=lm):
                return self.draft(request_text=request.input_as_text, outline_json=outline_json)

        async def _draft_node() -> Dict[str, Any]:
            pred = await anyio.to_thread.run_sync(_draft)
            obj = _best_effort_parse_json(str(getattr(pred, "document_json", "") or ""))
            if not isinstance(obj, dict):
                raise ValueError("Draft step returned invalid JSON")
            return obj

        return await run_node("draft", 2, _draft_node, on_progress)


__all__ = ["DraftDocument", "DraftingWorkflow", "OutlineDocument"]
