"""
Adaptive parsing of document service output into line items.

Exactly one path runs per document: HTML tables when the text contains a
``<table>...</table>`` pair, pipe tables otherwise.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from .html_table_parser import convert_html_tables_to_line_items, has_html_tables, line_item_tables, parse_html_tables
from .markdown_table_parser import extract_line_items_from_markdown_tables, parse_markdown_tables
from .models import ParsedContent, ParseMetadata, ParsingMethod

logger = logging.getLogger(__name__)


def parse_adaptive_table_format(content: str, now: Optional[datetime] = None) -> ParsedContent:
    """
    Parse markdown/HTML content into line items.

    Args:
        content: Text returned by the document service
        now: Timestamp recorded as parse time (defaults to current UTC time)

    Returns:
        ParsedContent; zero line items is a valid result
    """
    logger.info("Starting adaptive table parsing...")
    content = content or ""

    if has_html_tables(content):
        logger.info("Detected HTML table format")
        html_tables = parse_html_tables(content)
        line_items = convert_html_tables_to_line_items(html_tables)
        method = ParsingMethod.HTML_TABLES
        # only tables classified as line items count here
        table_count = len(line_item_tables(html_tables))
    else:
        logger.info("No HTML tables detected, using markdown parser")
        markdown_tables = parse_markdown_tables(content)
        line_items = extract_line_items_from_markdown_tables(markdown_tables)
        method = ParsingMethod.MARKDOWN_TABLES
        table_count = len(markdown_tables)

    logger.info(f"Final extracted line items using {method.value}: {len(line_items)}")

    parse_time = (now or datetime.now(timezone.utc)).isoformat()
    return ParsedContent(
        line_items=line_items,
        metadata=ParseMetadata(
            total_items=len(line_items),
            total_tables=table_count,
            parsing_method=method,
            parse_time=parse_time,
        ),
    )
