"""
Header-to-field mapping for extracted tables.

Two pattern sets are kept:
- ADAPTIVE_COLUMN_PATTERNS: anchored regexes used for HTML tables. Fields are
  tried in declaration order and a header goes to the first field that matches.
- LEGACY_COLUMN_PATTERNS: substring patterns used for markdown tables, matched
  exact-first then by containment, never assigning one column to two fields.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

logger = logging.getLogger(__name__)


def _patterns(*expressions: str) -> List[Pattern]:
    return [re.compile(expression, re.IGNORECASE) for expression in expressions]


# Order matters: it is the match priority
ADAPTIVE_COLUMN_PATTERNS: List[Tuple[str, List[Pattern]]] = [
    ("item_identifier", _patterns(
        r"^item$", r"^sku$", r"^part[\s_-]?number$", r"^part[\s_-]?num$", r"^part$",
        r"^product[\s_-]?code$", r"^model$", r"^model[\s_-]?number$",
        r"^catalog[\s_-]?number$", r"^catalog$", r"^item[\s_-]?code$",
        r"^product[\s_-]?id$", r"^item[\s_-]?id$", r"^mfg[\s_-]?part$", r"^manufacturer[\s_-]?part$",
    )),
    ("description", _patterns(
        r"^description$", r"^product[\s_-]?description$", r"^item[\s_-]?description$",
        r"^product[\s_-]?name$", r"^name$", r"^title$", r"^details$",
        r"^spec$", r"^specification$",
    )),
    ("quantity", _patterns(
        r"^qty$", r"^quantity$", r"^quan$", r"^amount$", r"^count$",
        r"^ordered$", r"^order[\s_-]?qty$", r"^ship[\s_-]?qty$",
    )),
    ("unit_price", _patterns(
        r"^unit[\s_-]?price$", r"^price$", r"^cost$", r"^rate$",
        r"^unit[\s_-]?cost$", r"^each$", r"^per[\s_-]?unit$",
        r"^list[\s_-]?price$", r"^selling[\s_-]?price$",
    )),
    ("total_price", _patterns(
        r"^total$", r"^amount$", r"^extended$", r"^extended[\s_-]?price$",
        r"^line[\s_-]?total$", r"^subtotal$", r"^net[\s_-]?amount$",
    )),
    ("uom", _patterns(
        r"^u[/\s_-]?m$", r"^unit$", r"^units$", r"^uom$", r"^each$", r"^ea$",
    )),
]

LEGACY_COLUMN_PATTERNS: Dict[str, List[str]] = {
    # strongest identifiers first
    "item": [
        "productcode", "product code", "itemcode", "item code", "sku",
        "partnumber", "part number", "partno", "part no",
        "itemid", "item id", "itemno", "item no", "itemnumber", "item number",
        "modelno", "model no", "modelnumber", "model number",
        "code",
    ],
    "part": ["part", "component", "material"],
    "description": ["description", "desc", "name", "details", "specification"],
    "quantity": ["qty", "quantity", "amount", "count"],
    "price": ["price", "rate", "cost", "unit"],
    "total": ["total", "amount", "sum", "ext", "value"],
    "uom": ["uom", "unit", "ea", "each", "units"],
}


def map_columns_to_fields(headers: Sequence[str]) -> Dict[str, int]:
    """Map field names to column indices for an HTML table."""
    mapping: Dict[str, int] = {}
    for index, raw_header in enumerate(headers):
        header = raw_header.lower().strip()
        for field_name, patterns in ADAPTIVE_COLUMN_PATTERNS:
            if any(pattern.search(header) for pattern in patterns):
                mapping[field_name] = index
                break
    return mapping


def normalize_header(header: str) -> str:
    """Lower-case a header and drop everything but letters and digits."""
    return re.sub(r"[^a-z0-9]", "", header.lower())


def find_column_index(headers: Sequence[str], patterns: Iterable[str],
                      exclude: Iterable[Optional[int]] = ()) -> Optional[int]:
    """
    Find the first column whose header matches one of ``patterns``.

    Exact equality of normalized text is tried across all columns before
    falling back to substring containment. Excluded indices are skipped.
    """
    excluded = {index for index in exclude if index is not None}
    cleaned_patterns = [normalize_header(pattern) for pattern in patterns]
    normalized = [normalize_header(header) for header in headers]

    for index, header in enumerate(normalized):
        if index in excluded:
            continue
        if header in cleaned_patterns:
            logger.debug(f"Exact column match: {headers[index]!r} at index {index}")
            return index

    for index, header in enumerate(normalized):
        if index in excluded:
            continue
        for pattern in cleaned_patterns:
            if pattern and pattern in header:
                logger.debug(f"Partial column match: {headers[index]!r} matched {pattern!r} at index {index}")
                return index

    return None


@dataclass(frozen=True)
class LegacyColumnMapping:
    item: Optional[int] = None
    part: Optional[int] = None
    description: Optional[int] = None
    quantity: Optional[int] = None
    price: Optional[int] = None
    total: Optional[int] = None
    uom: Optional[int] = None

    def consumed(self) -> set:
        """Columns holding values that are not identifiers."""
        return {
            index for index in (self.description, self.quantity, self.price, self.total, self.uom)
            if index is not None
        }


def map_legacy_columns(headers: Sequence[str]) -> LegacyColumnMapping:
    """Resolve markdown table columns field by field, excluding assigned columns."""
    assigned: List[Optional[int]] = []
    resolved: Dict[str, Optional[int]] = {}
    for field_name in ("item", "part", "description", "quantity", "price", "total", "uom"):
        index = find_column_index(headers, LEGACY_COLUMN_PATTERNS[field_name], assigned)
        resolved[field_name] = index
        assigned.append(index)

    mapping = LegacyColumnMapping(**resolved)
    logger.info(
        f"Column mapping: item={mapping.item}, part={mapping.part}, desc={mapping.description}, "
        f"qty={mapping.quantity}, price={mapping.price}, total={mapping.total}, uom={mapping.uom}"
    )
    return mapping
