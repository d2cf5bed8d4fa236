from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


BLOCK_TYPES = ("paragraph", "list", "table", "quote", "signatures")


def _as_text(v: Any) -> Any:
    """None becomes "", numbers and booleans become their string form; anything else is left for pydantic."""
    if v is None:
        return ""
    if isinstance(v, (bool, int, float)):
        return str(v)
    return v


class Block(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = ""
    type: str = "paragraph"
    text: str = ""
    ordered: bool = False
    items: List[str] = Field(default_factory=list)
    rows: List[List[str]] = Field(default_factory=list)
    source: str = ""

    @field_validator("id", "type", "text", "source", mode="before")
    @classmethod
    def _scalar_to_text(cls, v: Any) -> Any:
        return _as_text(v)

    @field_validator("items", mode="before")
    @classmethod
    def _lenient_items(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [_as_text(item) for item in v]
        return v

    @field_validator("rows", mode="before")
    @classmethod
    def _lenient_rows(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [[_as_text(cell) for cell in row] if isinstance(row, list) else row for row in v]
        return v

    @field_validator("ordered", mode="before")
    @classmethod
    def _none_to_false(cls, v: Any) -> Any:
        return False if v is None else v


class Section(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    order: int = 0
    heading: str = ""
    blocks: List[Block] = Field(default_factory=list)

    @field_validator("order", mode="before")
    @classmethod
    def _none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("heading", mode="before")
    @classmethod
    def _scalar_to_text(cls, v: Any) -> Any:
        return _as_text(v)


class Document(BaseModel):
    """A generated document: a title plus ordered sections of blocks."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str = ""
    sections: List[Section] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _scalar_to_text(cls, v: Any) -> Any:
        return _as_text(v)


__all__ = ["BLOCK_TYPES", "Block", "Document", "Section"]
