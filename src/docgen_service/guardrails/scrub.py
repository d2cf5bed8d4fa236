"""
Deep PII redaction over conversation history and workflow inputs.

Nodes form a closed set: `Message` (holds content parts), `ContentPart` (leaf text) and
`WorkflowField` (a named string field on a workflow input mapping). Sequences of nodes are
walked in order. Anything else is a programming error and raises `TypeError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, MutableMapping, Optional, Sequence, Union

from docgen_service.guardrails.checks import CheckContext, CheckFn
from docgen_service.guardrails.pipeline import safe_text, screen
from docgen_service.guardrails.policy import GuardrailPolicy, pii_only_policy


@dataclass
class _TextSlot:
    owner: MutableMapping[str, Any]
    key: str

    @property
    def text(self) -> str:
        return str(self.owner.get(self.key) or "")

    @text.setter
    def text(self, value: str) -> None:
        self.owner[self.key] = value


@dataclass
class ContentPart(_TextSlot):
    """The `text` of one content-part mapping, or a message's plain-string content."""

    key: str = "text"

    @classmethod
    def of(cls, text: str, type: str = "input_text") -> "ContentPart":
        return cls({"type": type, "text": text})


@dataclass
class Message:
    """
    View over a conversation message mapping.

    Scrubbing writes redacted text back into the mapping itself, so extra message keys
    and non-text parts (images, files) are untouched.
    """

    raw: MutableMapping[str, Any]

    @classmethod
    def from_dict(cls, raw: MutableMapping[str, Any]) -> "Message":
        return cls(raw)

    @property
    def role(self) -> str:
        return str(self.raw.get("role") or "user")

    @property
    def content(self) -> List[ContentPart]:
        parts = self.raw.get("content")
        if isinstance(parts, str):
            return [ContentPart(self.raw, "content")]
        if not isinstance(parts, list):
            return []
        return [ContentPart(p) for p in parts if isinstance(p, MutableMapping) and isinstance(p.get("text"), str)]

    def to_dict(self) -> MutableMapping[str, Any]:
        return self.raw


@dataclass
class WorkflowField(_TextSlot):
    """A named string field on a workflow input mapping."""


ScrubNode = Union[Message, ContentPart, WorkflowField]


def workflow_fields(workflow: MutableMapping[str, Any]) -> List[WorkflowField]:
    """Every top-level string field of a workflow input, as scrub nodes."""
    return [WorkflowField(workflow, key) for key, value in workflow.items() if isinstance(value, str)]


async def _safe_leaf(text: str, policy: GuardrailPolicy, ctx: Optional[CheckContext], checks: Optional[Mapping[str, CheckFn]]) -> str:
    if not text.strip():
        return text
    results = await screen(text, policy, ctx, checks=checks)
    return safe_text(results, text)


async def _scrub(
    node: Union[ScrubNode, Sequence[ScrubNode]],
    policy: GuardrailPolicy,
    ctx: Optional[CheckContext],
    checks: Optional[Mapping[str, CheckFn]],
) -> None:
    if isinstance(node, (list, tuple)):
        for child in node:
            await _scrub(child, policy, ctx, checks)
    elif isinstance(node, Message):
        for part in node.content:
            await _scrub(part, policy, ctx, checks)
    elif isinstance(node, ContentPart):
        node.text = await _safe_leaf(node.text, policy, ctx, checks)
    elif isinstance(node, WorkflowField):
        node.text = await _safe_leaf(node.text, policy, ctx, checks)
    else:
        raise TypeError(f"Cannot scrub node of type {type(node).__name__}")


async def scrub_deep(
    node: Union[ScrubNode, Sequence[ScrubNode]],
    policy: GuardrailPolicy,
    context: Optional[CheckContext] = None,
    *,
    checks: Optional[Mapping[str, CheckFn]] = None,
) -> None:
    """
    Replace every leaf text under `node` with its PII-redacted variant, in place.

    Only the policy's non-blocking PII check is used. No PII check, or a blocking one,
    makes this a no-op.
    """
    pii_policy = pii_only_policy(policy)
    if pii_policy is None:
        return
    await _scrub(node, pii_policy, context, checks)


__all__ = ["ContentPart", "Message", "ScrubNode", "WorkflowField", "scrub_deep", "workflow_fields"]
