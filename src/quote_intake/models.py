"""
Data models for the Quote Intake pipeline.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class TableType(str, Enum):
    """Classification of an extracted table."""
    LINE_ITEMS = "line_items"
    METADATA = "metadata"
    UNKNOWN = "unknown"


class ParsingMethod(str, Enum):
    HTML_TABLES = "html_tables"
    MARKDOWN_TABLES = "markdown_tables"


class JobStatus(str, Enum):
    """Status reported by the document intelligence service for a job."""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    TIMED_OUT = "TIMED_OUT"

    @classmethod
    def from_service(cls, value: Optional[str]) -> "JobStatus":
        # Anything the service reports that is not terminal is still running
        normalized = (value or "").strip().upper()
        if normalized == "SUCCESS":
            return cls.SUCCESS
        if normalized == "ERROR":
            return cls.ERROR
        return cls.PENDING


@dataclass
class ParsingJob:
    """An asynchronous parse job tracked by the external service."""
    id: str
    status: JobStatus = JobStatus.PENDING
    error: Optional[str] = None
    polls: int = 0


@dataclass
class ExtractedTable:
    """A table recovered from HTML output."""
    headers: List[str]
    rows: List[List[str]]
    table_type: TableType = TableType.UNKNOWN
    confidence: float = 0.0


@dataclass
class TableRow:
    cells: List[str]
    line_number: int


@dataclass
class MarkdownTable:
    """A pipe-delimited table recovered from markdown output."""
    headers: List[str]
    rows: List[TableRow] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0


@dataclass
class LineItem:
    """Represents a single normalized line item of a vendor document."""
    id: str
    item_number: str
    part_number: str
    description: str
    quantity: Optional[Decimal]
    unit_price: Optional[Decimal]
    total: Optional[Decimal]
    uom: str
    raw_row: str
    position: int
    source_line: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "item_number": self.item_number,
            "part_number": self.part_number,
            "description": self.description,
            "quantity": _number(self.quantity),
            "unit_price": _number(self.unit_price),
            "total": _number(self.total),
            "uom": self.uom,
            "raw_row": self.raw_row,
            "position": self.position,
            "source_line": self.source_line,
        }


@dataclass
class ParseMetadata:
    total_items: int
    total_tables: int
    parsing_method: ParsingMethod
    parse_time: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_items": self.total_items,
            "total_tables": self.total_tables,
            "parsing_method": self.parsing_method.value,
            "parse_time": self.parse_time,
        }


@dataclass
class ParsedContent:
    """Line items of one document plus parse metadata."""
    line_items: List[LineItem]
    metadata: ParseMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lineItems": [item.to_dict() for item in self.line_items],
            "metadata": self.metadata.to_dict(),
        }


def _number(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None
