"""
Guardrail check implementations.

Each check is an async callable `(text, config, ctx) -> GuardrailResult`. Deterministic checks
(PII, URL filter) run inline; model-backed checks call a DSPy program in a worker thread.
A check that cannot run raises: the pipeline drops it from the result set.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import anyio

from docgen_service.guardrails import prompts
from docgen_service.guardrails.policy import (
    CUSTOM_PROMPT_CHECK,
    DEFAULT_MODERATION_CATEGORIES,
    DEFAULT_PII_ENTITIES,
    HALLUCINATION_CHECK,
    JAILBREAK_CHECK,
    MODERATION_CHECK,
    NSFW_CHECK,
    PII_CHECK,
    PROMPT_INJECTION_CHECK,
    URL_FILTER_CHECK,
)
from docgen_service.guardrails.results import GuardrailResult


class CheckUnavailable(RuntimeError):
    pass


Predictor = Callable[..., Any]


def _dspy_predict(lm: Any, signature_name: str, **inputs: Any) -> Any:
    if lm is None:
        raise CheckUnavailable("DSPy LM not configured")

    import dspy

    from docgen_service.guardrails import signatures

    signature = getattr(signatures, signature_name)
    with dspy.context(lm=lm):
        return dspy.Predict(signature)(**inputs)


@dataclass
class CheckContext:
    """Shared state handed to every check in one `screen` call."""

    lm: Any = None
    conversation_history: List[Dict[str, Any]] = field(default_factory=list)
    predictor: Optional[Predictor] = None

    async def predict(self, signature_name: str, **inputs: Any) -> Any:
        if self.predictor is not None:
            return await anyio.to_thread.run_sync(lambda: self.predictor(signature_name, **inputs))
        return await anyio.to_thread.run_sync(lambda: _dspy_predict(self.lm, signature_name, **inputs))


CheckFn = Callable[[str, Dict[str, Any], CheckContext], Awaitable[GuardrailResult]]


# --- PII -------------------------------------------------------------------

_PII_PATTERNS: Dict[str, re.Pattern[str]] = {
    "EMAIL_ADDRESS": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "US_SSN": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "CREDIT_CARD": re.compile(r"\b(?:\d[ -]?){12,18}\d\b"),
    "IBAN_CODE": re.compile(r"\b[A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){2,7}(?: ?[A-Z0-9]{1,4})?\b"),
    "IP_ADDRESS": re.compile(r"\b(?:(?:25[0-5]|2[0-4]\d|1?\d?\d)\.){3}(?:25[0-5]|2[0-4]\d|1?\d?\d)\b"),
    "PHONE_NUMBER": re.compile(
        r"(?<![\w+])(?:\+\d{1,3}[ .-]?)?(?:\(\d{2,4}\) ?|\d{2,4}[ .-])\d{3,4}[ .-]?\d{3,4}(?!\w)"
    ),
}


def _luhn_ok(candidate: str) -> bool:
    digits = [int(c) for c in candidate if c.isdigit()]
    if len(digits) < 13:
        return False
    total = 0
    for i, d in enumerate(reversed(digits)):
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def detect_pii(text: str, entities: List[str]) -> List[Tuple[int, int, str, str]]:
    """Return non-overlapping `(start, end, entity_type, value)` spans, leftmost-longest first."""
    spans: List[Tuple[int, int, str, str]] = []
    for entity in entities:
        pattern = _PII_PATTERNS.get(entity)
        if pattern is None:
            continue
        for m in pattern.finditer(text or ""):
            value = m.group(0)
            if entity == "CREDIT_CARD" and not _luhn_ok(value):
                continue
            spans.append((m.start(), m.end(), entity, value))

    spans.sort(key=lambda s: (s[0], -(s[1] - s[0])))
    out: List[Tuple[int, int, str, str]] = []
    cursor = -1
    for span in spans:
        if span[0] < cursor:
            continue
        out.append(span)
        cursor = span[1]
    return out


def anonymize(text: str, spans: List[Tuple[int, int, str, str]]) -> str:
    out = text
    for start, end, entity, _ in sorted(spans, key=lambda s: s[0], reverse=True):
        out = out[:start] + f"<{entity}>" + out[end:]
    return out


async def check_pii(text: str, config: Dict[str, Any], ctx: CheckContext) -> GuardrailResult:
    entities = [str(e) for e in (config.get("entities") or DEFAULT_PII_ENTITIES)]
    block = bool(config.get("block", False))
    spans = detect_pii(text, entities)

    detected: Dict[str, List[str]] = {}
    for _, _, entity, value in spans:
        detected.setdefault(entity, []).append(value)

    info: Dict[str, Any] = {
        "guardrail_name": PII_CHECK,
        "detected_entities": detected,
        "entity_types_checked": entities,
        "pii_detected": bool(detected),
    }
    if detected:
        info["anonymized_text"] = anonymize(text, spans)
    return GuardrailResult(name=PII_CHECK, tripwire_triggered=block and bool(detected), info=info)


# --- URL filter ------------------------------------------------------------

_URL_RE = re.compile(r"(?:(?:https?|ftp)://|www\.)[^\s<>\"'\])]+", re.IGNORECASE)


def _url_allowed(url: str, allow_list: List[str], schemes: List[str]) -> bool:
    candidate = url if "://" in url else f"http://{url}"
    parts = urlsplit(candidate)
    if parts.scheme.lower() not in schemes:
        return False
    host = (parts.hostname or "").lower()
    for entry in allow_list:
        allowed = entry.lower().strip()
        if "://" in allowed:
            allowed = (urlsplit(allowed).hostname or "").lower()
        allowed = allowed.rstrip("/")
        if host == allowed or host.endswith("." + allowed):
            return True
    return False


async def check_url_filter(text: str, config: Dict[str, Any], ctx: CheckContext) -> GuardrailResult:
    allow_list = [str(u) for u in (config.get("url_allow_list") or [])]
    schemes = [str(s).lower() for s in (config.get("allowed_schemes") or ["https"])]
    block = bool(config.get("block", True))

    detected = [m.group(0).rstrip(".,;:!?") for m in _URL_RE.finditer(text or "")]
    allowed = [u for u in detected if _url_allowed(u, allow_list, schemes)]
    blocked = [u for u in detected if u not in allowed]

    info: Dict[str, Any] = {
        "guardrail_name": URL_FILTER_CHECK,
        "detected": detected,
        "allowed": allowed,
        "blocked": blocked,
    }
    if blocked and not block:
        sanitized = text
        for url in blocked:
            sanitized = sanitized.replace(url, "[URL REMOVED]")
        info["checked_text"] = sanitized
    return GuardrailResult(name=URL_FILTER_CHECK, tripwire_triggered=block and bool(blocked), info=info)


# --- Model-backed checks ---------------------------------------------------


def _as_float(v: Any) -> float:
    try:
        return max(0.0, min(1.0, float(v)))
    except (TypeError, ValueError):
        return 0.0


def _as_list(v: Any) -> List[str]:
    if isinstance(v, list):
        return [str(x) for x in v if str(x).strip()]
    if isinstance(v, str) and v.strip():
        return [v.strip()]
    return []


def _threshold(config: Dict[str, Any]) -> float:
    return _as_float(config.get("confidence_threshold", 0.7))


async def check_moderation(text: str, config: Dict[str, Any], ctx: CheckContext) -> GuardrailResult:
    categories = [str(c) for c in (config.get("categories") or DEFAULT_MODERATION_CATEGORIES)]
    pred = await ctx.predict("ModerateText", categories=categories, text=text)
    flagged = [c for c in _as_list(getattr(pred, "flagged_categories", None)) if c in categories]
    info = {
        "guardrail_name": MODERATION_CHECK,
        "flagged_categories": flagged,
        "categories_checked": categories,
    }
    return GuardrailResult(name=MODERATION_CHECK, tripwire_triggered=bool(flagged), info=info)


def _confidence_check(name: str, instructions: Callable[[Dict[str, Any]], str], *, with_history: bool = False) -> CheckFn:
    async def _check(text: str, config: Dict[str, Any], ctx: CheckContext) -> GuardrailResult:
        context_json = ""
        if with_history and ctx.conversation_history:
            context_json = json.dumps(ctx.conversation_history[-10:], ensure_ascii=True, separators=(",", ":"))
        pred = await ctx.predict("ScreenText", instructions=instructions(config), context_json=context_json, text=text)
        flagged = bool(getattr(pred, "flagged", False))
        confidence = _as_float(getattr(pred, "confidence", 0.0))
        threshold = _threshold(config)
        info = {
            "guardrail_name": name,
            "flagged": flagged,
            "confidence": confidence,
            "threshold": threshold,
        }
        return GuardrailResult(name=name, tripwire_triggered=flagged and confidence >= threshold, info=info)

    return _check


async def check_hallucination(text: str, config: Dict[str, Any], ctx: CheckContext) -> GuardrailResult:
    reference = str(config.get("reference_text") or "").strip()
    if not reference:
        raise CheckUnavailable("Hallucination Detection needs `reference_text`")
    pred = await ctx.predict("CheckGrounding", reference_text=reference, text=text)
    flagged = bool(getattr(pred, "flagged", False))
    confidence = _as_float(getattr(pred, "confidence", 0.0))
    threshold = _threshold(config)
    info = {
        "guardrail_name": HALLUCINATION_CHECK,
        "flagged": flagged,
        "confidence": confidence,
        "threshold": threshold,
        "reasoning": str(getattr(pred, "reasoning", "") or ""),
        "hallucination_type": str(getattr(pred, "hallucination_type", "") or ""),
        "hallucinated_statements": _as_list(getattr(pred, "hallucinated_statements", None)),
        "verified_statements": _as_list(getattr(pred, "verified_statements", None)),
    }
    return GuardrailResult(name=HALLUCINATION_CHECK, tripwire_triggered=flagged and confidence >= threshold, info=info)


CHECKS: Dict[str, CheckFn] = {
    PII_CHECK: check_pii,
    URL_FILTER_CHECK: check_url_filter,
    MODERATION_CHECK: check_moderation,
    JAILBREAK_CHECK: _confidence_check(JAILBREAK_CHECK, lambda cfg: prompts.JAILBREAK_INSTRUCTIONS),
    NSFW_CHECK: _confidence_check(NSFW_CHECK, lambda cfg: prompts.NSFW_INSTRUCTIONS),
    CUSTOM_PROMPT_CHECK: _confidence_check(
        CUSTOM_PROMPT_CHECK,
        lambda cfg: prompts.custom_prompt_instructions(cfg.get("system_prompt_details") or ""),
    ),
    PROMPT_INJECTION_CHECK: _confidence_check(
        PROMPT_INJECTION_CHECK,
        lambda cfg: prompts.PROMPT_INJECTION_INSTRUCTIONS,
        with_history=True,
    ),
    HALLUCINATION_CHECK: check_hallucination,
}


__all__ = [
    "CHECKS",
    "CheckContext",
    "CheckFn",
    "CheckUnavailable",
    "anonymize",
    "check_hallucination",
    "check_moderation",
    "check_pii",
    "check_url_filter",
    "detect_pii",
]
