"""
Quote Intake

Turns vendor PDF quotes and invoices into normalized line items using an
external document intelligence service and adaptive table parsing.
"""

__version__ = "1.0.0"

from .adaptive_parser import parse_adaptive_table_format
from .exceptions import (
    CircuitOpenError,
    DocumentServiceError,
    QuoteIntakeError,
    ServiceCallError,
    StorageError,
)
from .llamaparse_client import DocumentIntelligenceClient
from .models import LineItem, ParsedContent
from .parsing_service import ParsingPipelineService
from .resilient_executor import ResilientExecutor, RetryPolicy, circuit_breaker_stats, reset_circuit_breaker

__all__ = [
    "parse_adaptive_table_format",
    "CircuitOpenError",
    "DocumentServiceError",
    "QuoteIntakeError",
    "ServiceCallError",
    "StorageError",
    "DocumentIntelligenceClient",
    "LineItem",
    "ParsedContent",
    "ParsingPipelineService",
    "ResilientExecutor",
    "RetryPolicy",
    "circuit_breaker_stats",
    "reset_circuit_breaker",
]
