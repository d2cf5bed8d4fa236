"""
Guardrails: screen text against a policy of named checks, redact PII across nested
conversation structures, and summarize outcomes.
"""

from docgen_service.guardrails.checks import CheckContext
from docgen_service.guardrails.pipeline import is_blocked, safe_text, screen
from docgen_service.guardrails.policy import GuardrailPolicy, default_policy, load_policy, pii_only_policy
from docgen_service.guardrails.report import build_failure_report
from docgen_service.guardrails.results import GuardrailResult, ResultSet
from docgen_service.guardrails.scrub import ContentPart, Message, WorkflowField, scrub_deep, workflow_fields

__all__ = [
    "CheckContext",
    "ContentPart",
    "GuardrailPolicy",
    "GuardrailResult",
    "Message",
    "ResultSet",
    "WorkflowField",
    "build_failure_report",
    "default_policy",
    "is_blocked",
    "load_policy",
    "pii_only_policy",
    "safe_text",
    "screen",
    "scrub_deep",
    "workflow_fields",
]
