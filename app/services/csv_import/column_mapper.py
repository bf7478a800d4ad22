# app/services/csv_import/column_mapper.py
"""
Guess which canonical product field each CSV column holds.

Headers are lower-cased and trimmed, then tested against keyword rules in a
fixed order; the first rule that matches wins and adds its weight to the
confidence score. Headers that match nothing are left unmapped and end up in
the product's specs.

Known limitation: when two headers map to the same field (e.g. "Product" and
"Name"), the column that comes last in the file wins when a row is mapped.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from app.core.exceptions import ValidationError

# (target field, keyword pattern, weight). Order matters.
COLUMN_RULES = [
    ("title", re.compile(r"(title|name|product)"), 0.15),
    ("description", re.compile(r"(desc|description)"), 0.10),
    ("price", re.compile(r"(price|cost|amount)"), 0.15),
    ("sku", re.compile(r"(sku|part|pn|code)"), 0.15),
    ("brand", re.compile(r"(brand|manufacturer|make)"), 0.10),
    ("stock", re.compile(r"(stock|quantity|qty)"), 0.10),
    ("image_urls", re.compile(r"(image|img|photo|picture)"), 0.10),
    ("category", re.compile(r"(category|cat)"), 0.10),
]


@dataclass
class ColumnMapping:
    mappings: Dict[str, str] = field(default_factory=dict)
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {"mappings": dict(self.mappings), "confidence": self.confidence}


def match_header(header: str) -> Optional[tuple]:
    normalized = (header or "").strip().lower()
    if not normalized:
        return None
    for target, pattern, weight in COLUMN_RULES:
        if pattern.search(normalized):
            return target, weight
    return None


def detect_mappings(headers: Iterable[str]) -> ColumnMapping:
    """
    Map headers to canonical fields.

    >>> detect_mappings(["Title", "Part Number", "Price (BAM)", "Brand"]).confidence
    0.55
    """
    mappings = {}
    confidence = 0.0

    for header in headers:
        matched = match_header(header)
        if matched is None:
            continue
        target, weight = matched
        mappings[header] = target
        confidence += weight

    return ColumnMapping(mappings=mappings, confidence=min(round(confidence, 2), 1.0))


def apply_mapping(row: Dict[str, object], mappings: Dict[str, str]) -> Dict[str, object]:
    """Rename mapped columns to their canonical field; unmapped columns keep their header."""
    mapped = {}
    for header, value in row.items():
        mapped[mappings.get(header) or header] = value
    return mapped


def resolve_mapping(headers: List[str], override: Optional[Dict[str, str]] = None) -> ColumnMapping:
    """Detected mapping, or the caller's explicit one with confidence 1.0."""
    if override:
        unknown = [h for h in override if h not in headers]
        if unknown:
            raise ValidationError(f"Column mapping references unknown headers: {', '.join(unknown)}")
        return ColumnMapping(mappings=dict(override), confidence=1.0)
    return detect_mappings(headers)
