"""
HTML table extraction and classification for document service output.

The service embeds tables as ``<table>`` markup inside its markdown. Each
table is parsed into headers and rows, scored as line items or metadata,
and only line item tables are turned into LineItems.
"""

import logging
import math
from typing import List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from .column_patterns import map_columns_to_fields
from .line_item_extractor import extract_line_item_from_row
from .models import ExtractedTable, LineItem, TableType

logger = logging.getLogger(__name__)

MIN_CLASSIFICATION_SCORE = 30
SUMMARY_ROW_WORDS = ("total", "subtotal", "shipping")


def has_html_tables(text: str) -> bool:
    return "<table" in text and "</table>" in text


def parse_html_tables(text: str) -> List[ExtractedTable]:
    """Find and parse every top-level HTML table in ``text``."""
    soup = BeautifulSoup(text, "html.parser")
    table_tags = [tag for tag in soup.find_all("table") if tag.find_parent("table") is None]

    if not table_tags:
        logger.info("No HTML tables found in markdown")
        return []

    logger.info(f"Found {len(table_tags)} HTML tables")
    tables = []
    for index, table_tag in enumerate(table_tags, 1):
        table = parse_html_table(table_tag, index)
        if table is not None:
            tables.append(table)
    return tables


def parse_html_table(table_tag: Tag, table_index: int = 1) -> Optional[ExtractedTable]:
    header_row, headers = extract_table_headers(table_tag)
    rows = extract_table_rows(table_tag, len(headers), header_row)

    if not headers or not rows:
        logger.info(f"Table {table_index}: No valid headers or rows found")
        return None

    table_type, confidence = classify_table(headers, rows)
    logger.info(
        f"Table {table_index}: {len(headers)} headers, {len(rows)} rows, "
        f"type: {table_type.value}, confidence: {confidence}"
    )
    return ExtractedTable(headers=headers, rows=rows, table_type=table_type, confidence=confidence)


def clean_cell_text(cell: Tag) -> str:
    """Cell text with line breaks as spaces, tags stripped and entities decoded."""
    for line_break in cell.find_all("br"):
        line_break.replace_with(" ")
    return cell.get_text().replace("\xa0", " ").strip()


def extract_table_headers(table_tag: Tag) -> Tuple[Optional[Tag], List[str]]:
    """
    Headers come from ``<thead>`` when present, else from the first row.

    Returns:
        The row used as header when it was a plain first row (so it can be
        left out of the data rows), and the non-empty header texts
    """
    header_row = None
    section = table_tag.find("thead")
    if section is None:
        header_row = table_tag.find("tr")
        section = header_row
    if section is None:
        return None, []

    headers = []
    for cell in section.find_all(["th", "td"]):
        text = clean_cell_text(cell)
        if text:
            headers.append(text)
    return header_row, headers


def is_summary_row(row_tag: Tag) -> bool:
    """Spanning subtotal, shipping and total rows."""
    markup = str(row_tag).lower()
    return "colspan" in markup and any(word in markup for word in SUMMARY_ROW_WORDS)


def extract_table_rows(table_tag: Tag, expected_columns: int,
                       header_row: Optional[Tag] = None) -> List[List[str]]:
    """Data rows from ``<tbody>``, else every row except the first."""
    body = table_tag.find("tbody")
    row_tags = (body or table_tag).find_all("tr")
    if body is None:
        row_tags = row_tags[1:]
    elif header_row is not None:
        row_tags = [row for row in row_tags if row is not header_row]

    min_cells = max(3, math.floor(expected_columns * 0.7))
    rows = []
    for row_tag in row_tags:
        if is_summary_row(row_tag):
            continue
        cells = [clean_cell_text(cell) for cell in row_tag.find_all("td")]
        if len(cells) >= min_cells:
            rows.append(cells)
    return rows


def classify_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> Tuple[TableType, float]:
    """
    Score a table as line items or metadata from its header keywords and shape.

    Returns:
        (table type, confidence in [0, 1])
    """
    line_item_score = 0
    metadata_score = 0
    header_text = " ".join(headers).lower()

    def mentions(*words: str) -> bool:
        return any(word in header_text for word in words)

    if mentions("item", "sku", "part"):
        line_item_score += 30
    if mentions("description", "product"):
        line_item_score += 25
    if mentions("quantity", "qty"):
        line_item_score += 25
    if mentions("price", "cost", "amount"):
        line_item_score += 20

    if "order" in header_text and "date" in header_text:
        metadata_score += 40
    if mentions("customer", "ship to", "bill to"):
        metadata_score += 30
    if mentions("payment", "terms"):
        metadata_score += 25

    if len(rows) >= 3:
        line_item_score += 15
    if len(rows) >= 5:
        line_item_score += 10
    if len(rows) == 1:
        metadata_score += 20

    if len(headers) >= 4:
        line_item_score += 10
    if len(headers) >= 6:
        line_item_score += 5

    confidence = min(100, max(line_item_score, metadata_score)) / 100

    if line_item_score > metadata_score and line_item_score >= MIN_CLASSIFICATION_SCORE:
        return TableType.LINE_ITEMS, confidence
    if metadata_score > line_item_score and metadata_score >= MIN_CLASSIFICATION_SCORE:
        return TableType.METADATA, confidence
    return TableType.UNKNOWN, confidence


def line_item_tables(tables: Sequence[ExtractedTable]) -> List[ExtractedTable]:
    """Line item tables, most confident first."""
    candidates = [table for table in tables if table.table_type == TableType.LINE_ITEMS]
    return sorted(candidates, key=lambda table: table.confidence, reverse=True)


def convert_html_tables_to_line_items(tables: Sequence[ExtractedTable]) -> List[LineItem]:
    items: List[LineItem] = []
    position = 1
    selected = line_item_tables(tables)
    logger.info(f"Processing {len(selected)} line item tables")

    for table in selected:
        column_mapping = map_columns_to_fields(table.headers)
        logger.info(f"Column mapping for table: {column_mapping}")
        for row_index, row in enumerate(table.rows):
            item = extract_line_item_from_row(row, column_mapping, position, row_index)
            if item is not None:
                items.append(item)
                position += 1

    logger.info(f"Extracted {len(items)} line items total")
    return items
