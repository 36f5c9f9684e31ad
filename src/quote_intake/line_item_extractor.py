"""
Line item construction from table rows, plus number parsing shared by both
table paths.
"""

import logging
import re
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence

from babel.numbers import NumberFormatError, parse_decimal

from .models import LineItem

logger = logging.getLogger(__name__)

# Namespace for line item ids; ids depend only on position and row text
LINE_ITEM_NAMESPACE = uuid.UUID("8a6c1f0e-3d4b-5e2a-9c7d-1b0f2e3a4c5d")

_CURRENCY_AND_SPACE = re.compile(r"[$£€¥₹\s]")
_LEADING_NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)")


def parse_number(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a quantity or money cell.

    Currency symbols, whitespace and thousands separators are ignored.
    Text after a leading number is dropped (``"10 pcs"`` -> 10).

    Returns:
        Decimal value, or None when the cell holds no number
    """
    if not value or not isinstance(value, str):
        return None

    cleaned = _CURRENCY_AND_SPACE.sub("", value)
    if not cleaned:
        return None

    try:
        number = parse_decimal(cleaned, locale="en_US")
    except NumberFormatError:
        match = _LEADING_NUMBER.match(cleaned.replace(",", ""))
        if not match:
            return None
        try:
            number = Decimal(match.group(0))
        except InvalidOperation:
            return None

    return number if number.is_finite() else None


def make_item_id(position: int, raw_row: str) -> str:
    return str(uuid.uuid5(LINE_ITEM_NAMESPACE, f"{position}:{raw_row}"))


def extract_line_item_from_row(
    row: Sequence[str],
    column_mapping: Mapping[str, int],
    position: int,
    row_index: int,
) -> Optional[LineItem]:
    """
    Build a line item from an HTML table row.

    Args:
        row: Cell texts of the row
        column_mapping: Field name -> column index
        position: Document-wide 1-based position for this item
        row_index: 0-based index of the row within its table

    Returns:
        LineItem, or None if the row has neither identifier nor description
    """

    def get_value(field_name: str) -> str:
        index = column_mapping.get(field_name)
        if index is None or index >= len(row) or not row[index]:
            return ""
        return row[index].strip()

    item_id = get_value("item_identifier")
    description = get_value("description")

    if not item_id and not description:
        return None

    raw_row = " | ".join(row)
    return LineItem(
        id=make_item_id(position, raw_row),
        item_number=item_id or f"ITEM-{position}",
        part_number=item_id or f"PART-{position}",
        description=description or item_id or f"Unknown Item {position}",
        quantity=parse_number(get_value("quantity")),
        unit_price=parse_number(get_value("unit_price")),
        total=parse_number(get_value("total_price")),
        uom=get_value("uom") or "EA",
        raw_row=raw_row,
        position=position,
        source_line=row_index + 1,
    )


def is_header_row(cells: Sequence[str]) -> bool:
    header_text = " ".join(cells).lower()
    return "item no" in header_text and "description" in header_text and "qty" in header_text


def is_data_row(cells: Sequence[str]) -> bool:
    """Skip only empty rows and separator remnants."""
    if all(not cell or not cell.strip() for cell in cells):
        return False
    if cells and "---" in cells[0]:
        return False
    return True


def format_line_items_for_response(line_items: List[LineItem]) -> List[Dict[str, Any]]:
    """Shape line items for API consumers, adding raw and normalized text."""
    formatted = []
    for item in line_items:
        raw_text = item.description or item.part_number or item.raw_row
        entry = item.to_dict()
        entry["raw_text"] = raw_text
        entry["normalized_text"] = raw_text.lower().strip()
        formatted.append(entry)
    return formatted
