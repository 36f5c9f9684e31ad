"""
Client for the LlamaParse document intelligence service.

A document is processed as an asynchronous job: upload the bytes, poll the
job status until it is terminal, then fetch the markdown result. Each of the
three calls runs through the resilient executor under its own service name.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

import httpx

from .circuit_breaker import CircuitBreakerConfig
from .config import DEFAULT_BASE_URL
from .error_classifier import ErrorKind
from .exceptions import (
    CircuitOpenError,
    DocumentServiceError,
    JobFailedError,
    JobTimeoutError,
    ServiceCallError,
)
from .models import JobStatus, ParsingJob
from .resilient_executor import ResilientExecutor, RetryPolicy

logger = logging.getLogger(__name__)

UPLOAD_SERVICE = "LlamaParse-Upload"
STATUS_SERVICE = "LlamaParse-Status"
RESULTS_SERVICE = "LlamaParse-Results"

# PDF processing can take minutes on the service side
UPLOAD_RETRY = RetryPolicy(
    max_attempts=5, base_delay=2.0, max_delay=30.0,
    exponential_base=2.0, jitter_factor=0.2, timeout=180.0,
)
STATUS_RETRY = RetryPolicy(
    max_attempts=3, base_delay=1.0, max_delay=5.0,
    exponential_base=1.5, jitter_factor=0.1, timeout=10.0,
)
RESULTS_RETRY = UPLOAD_RETRY
LLAMAPARSE_BREAKER = CircuitBreakerConfig(failure_threshold=5, reset_timeout=300.0)

PARSING_INSTRUCTION = (
    "Extract line items, product descriptions, quantities, and prices "
    "from this invoice/quote document."
)

UPLOAD_OPTIONS = {
    "parsing_instruction": PARSING_INSTRUCTION,
    "parse_mode": "parse_page_with_agent",
    "adaptive_long_table": "true",
    "outlined_table_extraction": "true",
    "high_res_ocr": "true",
    "output_tables_as_HTML": "true",
}

DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_POLL_MAX_ATTEMPTS = 30
HEALTH_TIMEOUT = 5.0


@dataclass(frozen=True)
class RawResult:
    """Result body returned as plain markdown."""
    text: str


@dataclass(frozen=True)
class WrappedResult:
    """Result body returned as a JSON object with a ``markdown`` field."""
    markdown: str


ResultBody = Union[RawResult, WrappedResult]


def decode_result_body(body: str) -> ResultBody:
    """Tell a JSON-wrapped result apart from raw markdown."""
    try:
        payload = json.loads(body)
    except ValueError:
        return RawResult(body)

    markdown = payload.get("markdown") if isinstance(payload, dict) else None
    if isinstance(markdown, str) and markdown:
        return WrappedResult(markdown)
    if isinstance(payload, str) and payload != body:
        # JSON-encoded string, possibly wrapping another envelope
        return decode_result_body(payload)

    logger.warning("Result body is JSON without a non-empty markdown field, using raw text")
    return RawResult(body)


def unwrap_result(result: ResultBody) -> str:
    if isinstance(result, WrappedResult):
        return result.markdown
    return result.text


class DocumentIntelligenceClient:
    """Upload / poll / fetch client for LlamaParse jobs."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        executor: Optional[ResilientExecutor] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
    ):
        if poll_max_attempts < 1:
            raise ValueError("poll_max_attempts must be at least 1")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None
        self.executor = executor or ResilientExecutor()
        self.clock = self.executor.clock
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts

    async def __aenter__(self) -> "DocumentIntelligenceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def upload_document(self, data: bytes, filename: str = "document.pdf",
                              deadline: Optional[float] = None) -> str:
        """
        Upload document bytes and start a parse job.

        Returns:
            The job id assigned by the service
        """
        logger.info(f"Uploading {len(data)} bytes to LlamaParse")

        async def _call() -> Any:
            response = await self._http.post(
                f"{self.base_url}/api/v1/parsing/upload",
                headers=self._headers,
                data=UPLOAD_OPTIONS,
                files={"file": (filename, data, "application/pdf")},
            )
            response.raise_for_status()
            return response.json()

        try:
            payload = await self.executor.execute(
                UPLOAD_SERVICE, UPLOAD_RETRY, LLAMAPARSE_BREAKER, _call, deadline=deadline
            )
        except ServiceCallError as e:
            raise self._handle_api_error(e, "upload") from e

        job_id = payload.get("id") if isinstance(payload, dict) else None
        if not job_id:
            raise DocumentServiceError(
                "No job ID received from LlamaParse", ErrorKind.PERMANENT, "upload"
            )
        logger.info(f"Upload successful, job ID: {job_id}")
        return str(job_id)

    async def get_job_status(self, job_id: str,
                             deadline: Optional[float] = None) -> Tuple[JobStatus, Optional[str]]:
        """Fetch the current status of a job and the service's error, if any."""

        async def _call() -> Any:
            response = await self._http.get(
                f"{self.base_url}/api/v1/parsing/job/{job_id}", headers=self._headers
            )
            response.raise_for_status()
            return response.json()

        payload = await self.executor.execute(
            STATUS_SERVICE, STATUS_RETRY, LLAMAPARSE_BREAKER, _call, deadline=deadline
        )
        if not isinstance(payload, dict):
            return JobStatus.PENDING, None
        return JobStatus.from_service(payload.get("status")), payload.get("error")

    async def wait_for_completion(self, job_id: str, deadline: Optional[float] = None) -> ParsingJob:
        """
        Poll a job until it succeeds, fails, or runs out of budget.

        The budget is ``poll_max_attempts`` status checks spaced
        ``poll_interval`` apart, further bounded by ``deadline``. Transient
        status failures and checks refused by an open circuit use up one
        check each instead of failing the job.

        Raises:
            JobFailedError: The service reported the job as failed
            JobTimeoutError: Budget or deadline exhausted
            DocumentServiceError: A non-transient status failure
        """
        job = ParsingJob(id=job_id)

        while job.status == JobStatus.PENDING:
            if job.polls >= self.poll_max_attempts or self._past(deadline):
                job.status = JobStatus.TIMED_OUT
                break

            job.polls += 1
            try:
                status, error = await self.get_job_status(job_id, deadline=deadline)
            except ServiceCallError as e:
                if e.kind in (ErrorKind.AUTH, ErrorKind.PERMANENT):
                    raise self._handle_api_error(e, "status check") from e
                logger.warning(f"Status check {job.polls} for job {job_id} failed ({e.kind.value}), will retry")
            except CircuitOpenError:
                logger.warning(f"Status check {job.polls} for job {job_id} skipped, circuit open")
            else:
                logger.info(f"Job status (attempt {job.polls}): {status.value}")
                job.status = status
                job.error = error
                if status != JobStatus.PENDING:
                    break

            if job.polls >= self.poll_max_attempts:
                continue
            if deadline is not None and self.clock.time() + self.poll_interval > deadline:
                job.status = JobStatus.TIMED_OUT
                break
            await self.clock.sleep(self.poll_interval)

        if job.status == JobStatus.SUCCESS:
            return job
        if job.status == JobStatus.ERROR:
            logger.error(f"Job {job_id} failed on the service: {job.error}")
            raise JobFailedError(job_id, job.error)

        logger.error(f"Job {job_id} did not complete after {job.polls} status checks")
        raise JobTimeoutError(job_id, job.polls)

    async def get_results(self, job_id: str, deadline: Optional[float] = None) -> str:
        """Fetch the markdown result of a finished job."""
        logger.info(f"Fetching markdown result for job {job_id}")

        async def _call() -> str:
            response = await self._http.get(
                f"{self.base_url}/api/v1/parsing/job/{job_id}/result/markdown",
                headers=self._headers,
            )
            response.raise_for_status()
            return response.text

        try:
            body = await self.executor.execute(
                RESULTS_SERVICE, RESULTS_RETRY, LLAMAPARSE_BREAKER, _call, deadline=deadline
            )
        except ServiceCallError as e:
            raise self._handle_api_error(e, "fetch results") from e

        markdown = unwrap_result(decode_result_body(body))
        logger.info(f"Markdown result length: {len(markdown)}")
        logger.debug(f"Markdown preview: {markdown[:200]}")
        return markdown

    async def check_health(self) -> Dict[str, Any]:
        """Probe the service health endpoint. Never raises."""
        started = time.perf_counter()
        try:
            response = await self._http.get(f"{self.base_url}/api/health", timeout=HEALTH_TIMEOUT)
        except httpx.HTTPError as e:
            return {
                "healthy": False,
                "response_time": time.perf_counter() - started,
                "error": str(e) or e.__class__.__name__,
            }
        return {
            "healthy": response.is_success,
            "response_time": time.perf_counter() - started,
            "error": None if response.is_success else f"HTTP {response.status_code}",
        }

    def _past(self, deadline: Optional[float]) -> bool:
        return deadline is not None and self.clock.time() >= deadline

    @staticmethod
    def _handle_api_error(error: ServiceCallError, operation: str) -> DocumentServiceError:
        """Turn a terminal call failure into a kind-specific message."""
        logger.error(f"LlamaParse {operation} failed: {error.kind.value} - {error}")
        kind = error.kind
        if kind == ErrorKind.RATE_LIMIT:
            message = "LlamaParse rate limit exceeded. Please try again later."
        elif kind == ErrorKind.AUTH:
            message = "LlamaParse authentication failed. Please check your API key."
        elif kind == ErrorKind.TIMEOUT:
            message = f"LlamaParse {operation} timed out. The document may be too large or complex."
        elif kind == ErrorKind.NETWORK:
            message = "Network error connecting to LlamaParse. Please check your connection."
        else:
            message = f"LlamaParse {operation} failed: {error.classified.message}"
        return DocumentServiceError(message, kind, operation)
