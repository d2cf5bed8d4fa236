"""
Canonicalize the closing section of a generated document.

Upstream runs emit the closing in several shapes: a `closing_statement` block in some
section, a section merely headed "Closing ...", a separate `local_date` slot (deprecated)
in its own section, signatures anywhere. After `normalize` there is exactly one closing
section holding a closing paragraph followed by a signature block, and no `local_date`
blocks remain.

`normalize` is idempotent. The closing paragraph it writes is tagged with
`source="normalizer"` so a later pass keeps its date line instead of re-adding the default.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from docgen_service.documents.schemas import Block, Document, Section

logger = logging.getLogger(__name__)


CLOSING_BLOCK_ID = "closing_statement"
LOCAL_DATE_BLOCK_ID = "local_date"
SIGNATURE_BLOCK_TYPE = "signatures"
CLOSING_MARKER = "closing"
CLOSING_HEADING = "Closing and signatures"
DEFAULT_CLOSING_TEXT = "Agreed and signed by the parties below."
DEFAULT_DATE_LINE = "Place and date: ____________________"
NORMALIZER_SOURCE = "normalizer"


def _default_signature_block() -> Block:
    return Block(
        id="signatures",
        type=SIGNATURE_BLOCK_TYPE,
        items=["Name: ____________________"],
        source=NORMALIZER_SOURCE,
    )


def _find_section(doc: Document, pred: Callable[[Section], bool]) -> Optional[int]:
    for i, section in enumerate(doc.sections):
        if pred(section):
            return i
    return None


def _first_block(section: Section, pred: Callable[[Block], bool]) -> Optional[Block]:
    for block in section.blocks:
        if pred(block):
            return block
    return None


def _is_closing(block: Block) -> bool:
    return block.id == CLOSING_BLOCK_ID


def _is_local_date(block: Block) -> bool:
    return block.id == LOCAL_DATE_BLOCK_ID


def _is_signature(block: Block) -> bool:
    return block.type == SIGNATURE_BLOCK_TYPE


def _closing_text(closing: Optional[Block], local_date: Optional[Block]) -> str:
    has_date = local_date is not None and bool(local_date.text.strip())

    if closing is not None and closing.source == NORMALIZER_SOURCE and "\n" in closing.text:
        if not has_date:
            return closing.text
        statement, _, _ = closing.text.rpartition("\n")
        return f"{statement}\n{local_date.text}"

    statement = closing.text if closing is not None and closing.text.strip() else DEFAULT_CLOSING_TEXT
    date_line = local_date.text if has_date else DEFAULT_DATE_LINE
    return f"{statement}\n{date_line}"


def normalize(doc: Document) -> Document:
    """
    Return `doc` with a single canonical closing section.

    Documents without a closing section (no `closing_statement` block and no heading
    containing "closing") are returned unchanged. When several sections qualify the
    first one wins.
    """
    closing_idx = _find_section(doc, lambda s: any(_is_closing(b) for b in s.blocks))
    if closing_idx is None:
        closing_idx = _find_section(doc, lambda s: CLOSING_MARKER in s.heading.lower())
    if closing_idx is None:
        return doc

    out = doc.model_copy(deep=True)
    closing_section = out.sections[closing_idx]
    local_idx = _find_section(out, lambda s: any(_is_local_date(b) for b in s.blocks))

    closing_block = _first_block(closing_section, _is_closing)
    local_block = _first_block(out.sections[local_idx], _is_local_date) if local_idx is not None else None
    signature = None
    for section in out.sections:
        signature = _first_block(section, _is_signature)
        if signature is not None:
            break

    paragraph = Block(
        id=CLOSING_BLOCK_ID,
        type="paragraph",
        text=_closing_text(closing_block, local_block),
        source=NORMALIZER_SOURCE,
    )
    closing_section.blocks = [
        paragraph,
        signature.model_copy(deep=True) if signature is not None else _default_signature_block(),
    ]
    closing_section.heading = CLOSING_HEADING

    if local_idx is not None and local_idx != closing_idx:
        del out.sections[local_idx]

    for section in out.sections:
        if section is closing_section:
            continue
        section.blocks = [b for b in section.blocks if not _is_local_date(b)]

    return out


def coerce_document(raw: Any) -> Optional[Document]:
    """
    Interpret a workflow result as a `Document` when it has one.

    Accepts a `Document`, a mapping with a `sections` list, a mapping wrapping one under
    `output_parsed`, or JSON text of either.
    """
    if isinstance(raw, Document):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, Mapping):
        return None
    if isinstance(raw.get("sections"), list):
        try:
            return Document.model_validate(dict(raw))
        except ValidationError as e:
            logger.warning("Workflow result has sections but is not a document: %s", e.error_count())
            return None
    inner = raw.get("output_parsed")
    if isinstance(inner, Mapping):
        return coerce_document(inner)
    return None


def normalize_result(raw: Any) -> Any:
    """Normalize a raw workflow result into a plain dict; non-document results pass through."""
    doc = coerce_document(raw)
    if doc is None:
        return raw
    return normalize(doc).model_dump()


__all__ = [
    "CLOSING_BLOCK_ID",
    "CLOSING_HEADING",
    "DEFAULT_CLOSING_TEXT",
    "DEFAULT_DATE_LINE",
    "LOCAL_DATE_BLOCK_ID",
    "NORMALIZER_SOURCE",
    "SIGNATURE_BLOCK_TYPE",
    "coerce_document",
    "normalize",
    "normalize_result",
]
