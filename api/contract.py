"""
Response contract for normalized documents.

With `DOCGEN_VALIDATE_CONTRACT=true` the `/run` response is checked against the JSON schema
of `Document` before it is returned, so drift between a workflow and the document model
shows up as a logged 500 instead of a silently malformed payload.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict

from jsonschema import Draft202012Validator

from docgen_service.documents import Document

logger = logging.getLogger(__name__)


class ContractViolation(RuntimeError):
    pass


def contract_enabled() -> bool:
    return (os.getenv("DOCGEN_VALIDATE_CONTRACT") or "").strip().lower() == "true"


@lru_cache(maxsize=1)
def document_schema() -> Dict[str, Any]:
    return Document.model_json_schema()


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    return Draft202012Validator(document_schema())


def validate_document(payload: Any) -> None:
    errors = sorted(_validator().iter_errors(payload), key=lambda e: list(e.absolute_path))
    if errors:
        first = errors[0]
        where = "/".join(str(p) for p in first.absolute_path) or "<root>"
        logger.error("Document contract violation at %s: %s (%d errors)", where, first.message, len(errors))
        raise ContractViolation(f"{where}: {first.message}")


__all__ = ["ContractViolation", "contract_enabled", "document_schema", "validate_document"]
