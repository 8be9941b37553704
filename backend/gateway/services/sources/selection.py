"""Source selections: identifiers per catalog category."""
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

# category -> label used in warnings
CATEGORIES: Tuple[Tuple[str, str], ...] = (
    ("websites", "Website"),
    ("pdfs", "PDF"),
    ("documents", "Document"),
)


@dataclass(frozen=True)
class SourceSelection:
    """Identifiers per source category."""

    websites: Tuple[str, ...] = ()
    pdfs: Tuple[str, ...] = ()
    documents: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SourceSelection":
        data = data or {}
        return cls(**{name: tuple(data.get(name) or ()) for name, _ in CATEGORIES})

    def entries(self, category: str) -> Tuple[str, ...]:
        return getattr(self, category)

    def count(self) -> int:
        return sum(len(self.entries(name)) for name, _ in CATEGORIES)

    def is_empty(self) -> bool:
        return self.count() == 0

    def to_dict(self) -> Dict[str, List[str]]:
        """Non-empty categories only."""
        return {name: list(self.entries(name)) for name, _ in CATEGORIES if self.entries(name)}

