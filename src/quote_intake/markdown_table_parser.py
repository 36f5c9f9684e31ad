"""
Markdown (pipe) table parsing and line item extraction.

Used when the service output carries no HTML tables. Columns are mapped with
the substring patterns and item numbers are recovered with a staged fallback
because markdown headers are often missing or mislabeled.
"""

import logging
import re
from typing import List, Optional, Sequence

from .column_patterns import LegacyColumnMapping, map_legacy_columns, normalize_header
from .line_item_extractor import is_data_row, is_header_row, make_item_id, parse_number
from .models import LineItem, MarkdownTable, TableRow
from .product_codes import looks_like_line_index, looks_like_product_code

logger = logging.getLogger(__name__)

SEPARATOR_LINE = re.compile(r"^\|[\s\-|:]+\|$")
MIN_TABLE_COLUMNS = 3


def split_cells(line: str) -> List[str]:
    """Split a pipe row into stripped cells, keeping interior empty cells."""
    line = line.strip()
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|"):
        line = line[:-1]
    return [cell.strip() for cell in line.split("|")]


def _filled(cells: Sequence[str]) -> List[str]:
    return [cell for cell in cells if cell]


def parse_markdown_tables(text: str) -> List[MarkdownTable]:
    """
    Collect pipe tables from markdown text.

    A pipe line with at least three non-empty cells opens a table; later pipe
    lines with content extend it. Separator lines are skipped. A blank or
    non-table line closes the current table.
    """
    tables: List[MarkdownTable] = []
    current: Optional[MarkdownTable] = None
    lines = text.split("\n")
    logger.info(f"Parsing markdown with {len(lines)} lines")

    for line_number, raw_line in enumerate(lines, 1):
        line = raw_line.strip()

        if not line or "|" not in line:
            if current is not None:
                tables.append(current)
                logger.debug(f"Closed table with {len(current.rows)} rows")
                current = None
            continue

        if SEPARATOR_LINE.match(line):
            continue

        cells = split_cells(line)
        filled = len(_filled(cells))
        if current is None:
            if filled >= MIN_TABLE_COLUMNS:
                current = MarkdownTable(headers=cells, start_line=line_number, end_line=line_number)
                logger.debug(f"Started new table with headers: {_filled(cells)}")
        elif filled:
            current.rows.append(TableRow(cells=cells, line_number=line_number))
            current.end_line = line_number

    if current is not None:
        tables.append(current)
        logger.debug(f"Closed final table with {len(current.rows)} rows")

    total_rows = sum(len(table.rows) for table in tables)
    logger.info(f"Found {len(tables)} tables with {total_rows} total rows")
    return tables


def _cell(cells: Sequence[str], index: Optional[int]) -> str:
    if index is None or index >= len(cells):
        return ""
    return cells[index].strip()


def extract_smart_item_number(cells: Sequence[str], mapping: LegacyColumnMapping,
                              headers: Sequence[str]) -> str:
    """
    Pick an item number for a markdown row; first non-empty stage wins.

    1. The item column, unless it holds a short pure number (a line index).
    2. A product-code-like value from any column, preferring columns not
       consumed by description, quantity, price, total or unit of measure.
    3. The part column.
    4. The description, when its header marks it as a product description
       or the table has no item column at all.
    """
    item_value = _cell(cells, mapping.item)
    if item_value and not looks_like_line_index(item_value):
        return item_value

    found = ""
    consumed = mapping.consumed()
    for index, raw in enumerate(cells):
        value = raw.strip()
        if not value or not looks_like_product_code(value):
            continue
        used = index in consumed
        if not used or not found:
            logger.debug(f"Found potential product identifier: {value!r} in column {index} (used: {used})")
            found = value
            if not used:
                break
    if found:
        return found

    part_value = _cell(cells, mapping.part)
    if part_value:
        logger.debug(f"Using part number as item identifier: {part_value!r}")
        return part_value

    description = _cell(cells, mapping.description)
    if description:
        description_header = normalize_header(_cell(headers, mapping.description))
        holds_products = "productdescription" in description_header or "productdesc" in description_header
        if holds_products or mapping.item is None:
            return description

    return ""


def extract_line_items_from_markdown_tables(tables: Sequence[MarkdownTable]) -> List[LineItem]:
    items: List[LineItem] = []
    position = 1

    for table in tables:
        logger.info(f"Processing table with {len(table.rows)} rows, headers: {' | '.join(table.headers)}")
        mapping = map_legacy_columns(table.headers)

        for row in table.rows:
            cells = row.cells
            if not is_data_row(cells):
                reason = "header" if is_header_row(cells) else "other"
                logger.debug(f"Skipping non-data row at line {row.line_number}: {reason}")
                continue

            filled = _filled(cells)
            raw_row = " | ".join(filled)
            item_number = extract_smart_item_number(cells, mapping, table.headers)
            part_number = _cell(cells, mapping.part)
            if mapping.description is not None:
                description = _cell(cells, mapping.description)
            else:
                description = " ".join(filled)

            if not description and not part_number:
                continue

            items.append(LineItem(
                id=make_item_id(position, raw_row),
                item_number=item_number or str(position),
                part_number=part_number,
                description=description,
                quantity=parse_number(_cell(cells, mapping.quantity)),
                unit_price=parse_number(_cell(cells, mapping.price)),
                total=parse_number(_cell(cells, mapping.total)),
                uom=_cell(cells, mapping.uom),
                raw_row=raw_row,
                position=position,
                source_line=row.line_number,
            ))
            logger.debug(f"Extracted item {position}: {description or part_number}")
            position += 1

    logger.info(f"Total extracted line items: {len(items)}")
    return items
