from __future__ import annotations

import json
from typing import Any, List, Mapping

from docgen_service.documents.schemas import Document


def _raw_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(payload)


def flatten_text(payload: Any) -> str:
    """
    Flat text used for `token` streaming.

    Depth-first: each section heading, then each block's text (when non-blank) and its items
    one per line; parts are separated by blank lines. Payloads without a `sections` list are
    encoded as-is.
    """
    data = payload.model_dump() if isinstance(payload, Document) else payload
    sections = data.get("sections") if isinstance(data, Mapping) else None
    if not isinstance(sections, list):
        return _raw_text(payload)

    parts: List[str] = []
    for section in sections:
        if not isinstance(section, Mapping):
            continue
        heading = str(section.get("heading") or "").strip()
        if heading:
            parts.append(heading)
        for block in section.get("blocks") or []:
            if not isinstance(block, Mapping):
                continue
            text = str(block.get("text") or "")
            if text.strip():
                parts.append(text)
            items = [str(item) for item in (block.get("items") or []) if str(item).strip()]
            if items:
                parts.append("\n".join(items))
    return "\n\n".join(parts)


__all__ = ["flatten_text"]
