"""
DSPy LM resolution.

Each caller names an env prefix (e.g. `DSPY_GUARDRAILS`, `DSPY_WORKFLOW`) so the guardrail
checks and the default workflow can run on different models.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional


def _prefixed_model(provider: str, model: str) -> str:
    p = str(provider or "").strip().lower()
    m = str(model or "").strip()
    if not p or not m:
        return m
    if m.startswith(f"{p}/"):
        return m
    return f"{p}/{m}"


def resolve_lm_config(*, module_env_prefix: str, default_model: str = "gpt-4o-mini") -> Optional[Dict[str, str]]:
    """
    Resolve the DSPy LM config for a module using env overrides.

    Env resolution order (example for module_env_prefix="DSPY_GUARDRAILS"):
      - DSPY_GUARDRAILS_PROVIDER / DSPY_PROVIDER
      - DSPY_GUARDRAILS_MODEL / DSPY_MODEL / default

    Returns None when the provider's API key is missing.
    """
    prefix = str(module_env_prefix or "").strip().upper()
    provider = (os.getenv(f"{prefix}_PROVIDER") or os.getenv("DSPY_PROVIDER") or "openai").lower()
    model_name = str(os.getenv(f"{prefix}_MODEL") or os.getenv("DSPY_MODEL") or default_model).strip()

    if provider == "groq":
        if not os.getenv("GROQ_API_KEY"):
            return None
        return {"provider": "groq", "model": _prefixed_model("groq", model_name), "modelName": model_name}

    if provider == "openai":
        if not os.getenv("OPENAI_API_KEY"):
            return None
        return {"provider": "openai", "model": _prefixed_model("openai", model_name), "modelName": model_name}

    return None


def make_lm(*, module_env_prefix: str, max_tokens: int = 800, temperature: float = 0.0) -> Optional[Any]:
    """Build a `dspy.LM` for the module, or None if not configured."""
    lm_cfg = resolve_lm_config(module_env_prefix=module_env_prefix)
    if not lm_cfg:
        return None

    import dspy

    llm_timeout = float(os.getenv("DSPY_LLM_TIMEOUT_SEC") or "20")
    return dspy.LM(
        model=lm_cfg["model"],
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=llm_timeout,
        num_retries=0,
    )


__all__ = ["make_lm", "resolve_lm_config"]
