"""
Top-level document parsing pipeline.

download bytes -> upload to the document service -> wait for the job ->
fetch markdown -> parse line items
"""

import logging
from typing import Any, Dict, List, Optional, Union

from .adaptive_parser import parse_adaptive_table_format
from .circuit_breaker import CircuitBreakerStats
from .config import Settings, get_settings
from .line_item_extractor import format_line_items_for_response
from .llamaparse_client import DocumentIntelligenceClient
from .log_utils import log_operation
from .models import ParsedContent
from .storage import LocalStorageClient, StorageClient, SupabaseStorageClient

logger = logging.getLogger(__name__)

DocumentSource = Union[bytes, bytearray, str]


class ParsingPipelineService:
    """
    Runs the document parsing pipeline.

    Steps are not transactional: a job created before a later failure is
    left on the service. Callers decide whether to retry the whole pipeline.
    """

    def __init__(self, client: DocumentIntelligenceClient, storage: StorageClient):
        self.client = client
        self.storage = storage

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ParsingPipelineService":
        settings = settings or get_settings()
        settings.validate_for_pipeline()

        client = DocumentIntelligenceClient(
            api_key=settings.llama_cloud_api_key,
            base_url=settings.llama_cloud_base_url,
            poll_interval=settings.poll_interval_seconds,
            poll_max_attempts=settings.poll_max_attempts,
        )
        if settings.local_storage_root:
            storage = LocalStorageClient(settings.local_storage_root)
        else:
            storage = SupabaseStorageClient(
                settings.supabase_url, settings.supabase_service_key, settings.storage_bucket
            )
        return cls(client, storage)

    async def aclose(self) -> None:
        await self.client.aclose()
        close = getattr(self.storage, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "ParsingPipelineService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def parse_document(self, source: DocumentSource, timeout: Optional[float] = None) -> ParsedContent:
        """
        Parse one document into line items.

        Args:
            source: Document bytes, or a storage path to fetch them from
            timeout: Optional overall budget in seconds; polling and retry
                backoff stop once it is spent

        Returns:
            ParsedContent with line items and parse metadata

        Raises:
            StorageError: Fetching the document failed
            CircuitOpenError: The document service is unavailable
            DocumentServiceError: Upload, job or result retrieval failed
        """
        clock = self.client.clock
        deadline = clock.time() + timeout if timeout is not None else None
        reference = "<bytes>" if isinstance(source, (bytes, bytearray)) else source

        async with log_operation(logger, "parseDocument", source=reference):
            if isinstance(source, (bytes, bytearray)):
                data = bytes(source)
            else:
                async with log_operation(logger, "downloadFile", path=source):
                    data = await self.storage.download_file(source)

            async with log_operation(logger, "uploadToLlamaParse", size=len(data)):
                job_id = await self.client.upload_document(data, deadline=deadline)

            async with log_operation(logger, "waitForCompletion", job_id=job_id):
                await self.client.wait_for_completion(job_id, deadline=deadline)

            async with log_operation(logger, "getResults", job_id=job_id):
                markdown = await self.client.get_results(job_id, deadline=deadline)

            async with log_operation(logger, "parseContent"):
                parsed = parse_adaptive_table_format(markdown)

        logger.info(
            f"PDF parsing pipeline completed: {parsed.metadata.total_items} items, "
            f"method {parsed.metadata.parsing_method.value}, {parsed.metadata.total_tables} tables"
        )
        return parsed

    async def parse_document_with_formatting(self, source: DocumentSource,
                                             timeout: Optional[float] = None) -> Dict[str, Any]:
        parsed = await self.parse_document(source, timeout=timeout)
        return {
            "success": True,
            "lineItems": format_line_items_for_response(parsed.line_items),
            "metadata": parsed.metadata.to_dict(),
        }

    def circuit_breaker_stats(self) -> List[CircuitBreakerStats]:
        return self.client.executor.registry.circuit_breaker_stats()

    def reset_circuit_breaker(self, service_name: str) -> bool:
        return self.client.executor.registry.reset_circuit_breaker(service_name)
