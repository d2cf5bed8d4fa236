"""
Generated-document model, closing-section normalization, and flat-text rendering.
"""

from docgen_service.documents.flatten import flatten_text
from docgen_service.documents.normalizer import coerce_document, normalize, normalize_result
from docgen_service.documents.schemas import Block, Document, Section

__all__ = ["Block", "Document", "Section", "coerce_document", "flatten_text", "normalize", "normalize_result"]
