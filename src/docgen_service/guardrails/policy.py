from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


PII_CHECK = "Contains PII"
MODERATION_CHECK = "Moderation"
JAILBREAK_CHECK = "Jailbreak"
HALLUCINATION_CHECK = "Hallucination Detection"
NSFW_CHECK = "NSFW Text"
URL_FILTER_CHECK = "URL Filter"
CUSTOM_PROMPT_CHECK = "Custom Prompt Check"
PROMPT_INJECTION_CHECK = "Prompt Injection Detection"

DEFAULT_PII_ENTITIES = [
    "EMAIL_ADDRESS",
    "PHONE_NUMBER",
    "CREDIT_CARD",
    "US_SSN",
    "IBAN_CODE",
    "IP_ADDRESS",
]

DEFAULT_MODERATION_CATEGORIES = [
    "sexual",
    "sexual/minors",
    "hate",
    "hate/threatening",
    "harassment",
    "harassment/threatening",
    "self-harm",
    "self-harm/intent",
    "self-harm/instructions",
    "violence",
    "violence/graphic",
    "illicit",
    "illicit/violent",
]


class CheckSpec(BaseModel):
    """One named check plus its parameters, as configured."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    config: Dict[str, Any] = Field(default_factory=dict)


class GuardrailPolicy(BaseModel):
    """
    Ordered list of checks to run against a piece of text.

    Accepts both `checks` and the `guardrails` key used by exported guardrail bundles.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    version: int = 1
    checks: List[CheckSpec] = Field(default_factory=list, alias="guardrails")

    def get(self, name: str) -> Optional[CheckSpec]:
        for spec in self.checks:
            if spec.name == name:
                return spec
        return None

    def names(self) -> List[str]:
        return [spec.name for spec in self.checks]


def default_policy() -> GuardrailPolicy:
    return GuardrailPolicy(
        checks=[
            CheckSpec(name=PII_CHECK, config={"entities": list(DEFAULT_PII_ENTITIES), "block": False}),
            CheckSpec(name=MODERATION_CHECK, config={"categories": list(DEFAULT_MODERATION_CATEGORIES)}),
            CheckSpec(name=JAILBREAK_CHECK, config={"confidence_threshold": 0.7}),
        ]
    )


def load_policy(path: Optional[str]) -> GuardrailPolicy:
    """Load a policy from a JSON file; no path means the built-in default policy."""
    if not path:
        return default_policy()
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    policy = GuardrailPolicy.model_validate(raw)
    logger.info("Loaded guardrail policy from %s checks=%s", path, policy.names())
    return policy


def pii_only_policy(policy: GuardrailPolicy) -> Optional[GuardrailPolicy]:
    """
    Reduce a policy to its PII check, for redaction passes.

    Returns None when there is no PII check or the PII check is configured to block:
    blocking PII is a gate, not a redaction.
    """
    spec = policy.get(PII_CHECK)
    if spec is None:
        return None
    if bool(spec.config.get("block", False)):
        return None
    return GuardrailPolicy(version=policy.version, checks=[spec])


__all__ = [
    "CUSTOM_PROMPT_CHECK",
    "CheckSpec",
    "DEFAULT_MODERATION_CATEGORIES",
    "DEFAULT_PII_ENTITIES",
    "GuardrailPolicy",
    "HALLUCINATION_CHECK",
    "JAILBREAK_CHECK",
    "MODERATION_CHECK",
    "NSFW_CHECK",
    "PII_CHECK",
    "PROMPT_INJECTION_CHECK",
    "URL_FILTER_CHECK",
    "default_policy",
    "load_policy",
    "pii_only_policy",
]
