from __future__ import annotations

from typing import Any, Dict, List

from docgen_service.guardrails.policy import (
    CUSTOM_PROMPT_CHECK,
    HALLUCINATION_CHECK,
    JAILBREAK_CHECK,
    MODERATION_CHECK,
    NSFW_CHECK,
    PII_CHECK,
    PROMPT_INJECTION_CHECK,
    URL_FILTER_CHECK,
)
from docgen_service.guardrails.results import GuardrailResult, ResultSet


def _pii_entry(result: GuardrailResult | None) -> Dict[str, Any]:
    if result is None:
        return {"failed": False, "detected_counts": {}}
    detected = result.info.get("detected_entities") or {}
    counts = {str(k): len(v) for k, v in detected.items() if isinstance(v, list) and v}
    return {"failed": bool(result.tripwire_triggered or any(counts.values())), "detected_counts": counts}


def _moderation_entry(result: GuardrailResult | None) -> Dict[str, Any]:
    if result is None:
        return {"failed": False, "flagged_categories": []}
    flagged: List[str] = [str(c) for c in (result.info.get("flagged_categories") or [])]
    return {"failed": bool(result.tripwire_triggered or flagged), "flagged_categories": flagged}


def _hallucination_entry(result: GuardrailResult | None) -> Dict[str, Any]:
    if result is None:
        return {
            "failed": False,
            "reasoning": "",
            "hallucination_type": "",
            "hallucinated_statements": [],
            "verified_statements": [],
        }
    info = result.info
    return {
        "failed": bool(result.tripwire_triggered),
        "reasoning": str(info.get("reasoning") or ""),
        "hallucination_type": str(info.get("hallucination_type") or ""),
        "hallucinated_statements": list(info.get("hallucinated_statements") or []),
        "verified_statements": list(info.get("verified_statements") or []),
    }


def _url_entry(result: GuardrailResult | None) -> Dict[str, Any]:
    if result is None:
        return {"failed": False, "blocked": []}
    return {"failed": bool(result.tripwire_triggered), "blocked": list(result.info.get("blocked") or [])}


def _confidence_entry(result: GuardrailResult | None) -> Dict[str, Any]:
    if result is None:
        return {"failed": False}
    out: Dict[str, Any] = {"failed": bool(result.tripwire_triggered)}
    if "confidence" in result.info:
        out["confidence"] = result.info.get("confidence")
    return out


def build_failure_report(results: ResultSet) -> Dict[str, Dict[str, Any]]:
    """
    Summarize a result set per well-known check.

    Informational only: gating is `is_blocked`. Checks missing from the result set
    report `failed: False`.
    """
    return {
        "pii": _pii_entry(results.get(PII_CHECK)),
        "moderation": _moderation_entry(results.get(MODERATION_CHECK)),
        "jailbreak": _confidence_entry(results.get(JAILBREAK_CHECK)),
        "hallucination": _hallucination_entry(results.get(HALLUCINATION_CHECK)),
        "nsfw": _confidence_entry(results.get(NSFW_CHECK)),
        "url_filter": _url_entry(results.get(URL_FILTER_CHECK)),
        "custom_prompt": _confidence_entry(results.get(CUSTOM_PROMPT_CHECK)),
        "prompt_injection": _confidence_entry(results.get(PROMPT_INJECTION_CHECK)),
    }


__all__ = ["build_failure_report"]
