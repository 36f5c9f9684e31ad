"""
Exceptions raised by the Quote Intake pipeline.
"""

from typing import Optional

from .error_classifier import ClassifiedError, ErrorKind


class QuoteIntakeError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(QuoteIntakeError):
    """Required settings are missing or invalid."""


class StorageError(QuoteIntakeError):
    """Fetching document bytes from storage failed."""


class ServiceCallError(QuoteIntakeError):
    """A resilient call failed terminally (not retryable, or attempts exhausted)."""

    def __init__(self, service_name: str, classified: ClassifiedError, attempts: int):
        self.service_name = service_name
        self.classified = classified
        self.attempts = attempts
        super().__init__(
            f"[{service_name}] {classified.kind.value} after {attempts} attempt(s): {classified.message}"
        )

    @property
    def kind(self) -> ErrorKind:
        return self.classified.kind

    @property
    def status_code(self) -> Optional[int]:
        return self.classified.status_code


class CircuitOpenError(QuoteIntakeError):
    """The circuit for a service is open; the call was refused without I/O."""

    def __init__(self, service_name: str, retry_at: Optional[float] = None):
        self.service_name = service_name
        self.retry_at = retry_at
        super().__init__(f"Service '{service_name}' is temporarily unavailable (circuit open)")


class DocumentServiceError(QuoteIntakeError):
    """Human-readable failure of a document intelligence operation."""

    def __init__(self, message: str, kind: ErrorKind, operation: str):
        self.kind = kind
        self.operation = operation
        super().__init__(message)


class JobFailedError(DocumentServiceError):
    """The parse job finished in the Error state."""

    def __init__(self, job_id: str, reason: Optional[str]):
        self.job_id = job_id
        self.reason = reason or "Unknown error"
        super().__init__(f"Parsing failed: {self.reason}", ErrorKind.PERMANENT, "wait for completion")


class JobTimeoutError(DocumentServiceError):
    """The parse job did not finish within the polling budget or deadline."""

    def __init__(self, job_id: str, polls: int):
        self.job_id = job_id
        self.polls = polls
        super().__init__(
            f"Parsing timed out or failed to complete after {polls} status checks",
            ErrorKind.TIMEOUT,
            "wait for completion",
        )
