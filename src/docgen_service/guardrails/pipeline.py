from __future__ import annotations

import logging
from typing import List, Mapping, Optional

import anyio

from docgen_service.guardrails.checks import CHECKS, CheckContext, CheckFn
from docgen_service.guardrails.policy import CheckSpec, GuardrailPolicy
from docgen_service.guardrails.results import GuardrailResult, ResultSet

logger = logging.getLogger(__name__)


async def screen(
    text: str,
    policy: GuardrailPolicy,
    context: Optional[CheckContext] = None,
    *,
    checks: Optional[Mapping[str, CheckFn]] = None,
) -> ResultSet:
    """
    Run every check in `policy` against `text`.

    Checks run concurrently; results keep policy order. A check that is unknown or raises
    is logged and left out of the result set, so this never raises.
    """
    registry = checks if checks is not None else CHECKS
    ctx = context or CheckContext()
    slots: List[Optional[GuardrailResult]] = [None] * len(policy.checks)

    async def _run(index: int, spec: CheckSpec) -> None:
        fn = registry.get(spec.name)
        if fn is None:
            logger.warning("Unknown guardrail check %r skipped", spec.name)
            return
        try:
            slots[index] = await fn(text, dict(spec.config or {}), ctx)
        except Exception as e:
            logger.warning("Guardrail check %r unavailable: %s: %s", spec.name, type(e).__name__, e)

    async with anyio.create_task_group() as tg:
        for index, spec in enumerate(policy.checks):
            tg.start_soon(_run, index, spec)

    return ResultSet([r for r in slots if r is not None])


def is_blocked(results: ResultSet) -> bool:
    return any(r.tripwire_triggered for r in results)


def safe_text(results: ResultSet, fallback: str) -> str:
    """
    Pick the text downstream code should see.

    Sanitized text (`checked_text`) wins over PII-redacted text (`anonymized_text`);
    with neither present the original text is returned.
    """
    for result in results:
        checked = result.info.get("checked_text") if isinstance(result.info, dict) else None
        if isinstance(checked, str):
            return checked
    for result in results:
        anonymized = result.info.get("anonymized_text") if isinstance(result.info, dict) else None
        if isinstance(anonymized, str):
            return anonymized
    return fallback


__all__ = ["is_blocked", "safe_text", "screen"]
