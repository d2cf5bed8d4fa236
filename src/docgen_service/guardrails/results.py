from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional


@dataclass
class GuardrailResult:
    name: str
    tripwire_triggered: bool = False
    info: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResultSet:
    """Check outcomes in policy order. Look entries up by name, not position."""

    results: List[GuardrailResult] = field(default_factory=list)

    def get(self, name: str) -> Optional[GuardrailResult]:
        for result in self.results:
            if result.name == name:
                return result
        return None

    def __iter__(self) -> Iterator[GuardrailResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)


__all__ = ["GuardrailResult", "ResultSet"]
