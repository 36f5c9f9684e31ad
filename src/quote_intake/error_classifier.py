"""
Failure classification for calls to external services.

``classify`` is the only place that decides whether a failure is worth
retrying. The resilient executor and the document intelligence client both
defer to it.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    AUTH = "AUTHENTICATION"
    PERMANENT = "PERMANENT"


@dataclass(frozen=True)
class ClassifiedError:
    """Outcome of classifying a failed call."""
    kind: ErrorKind
    retryable: bool
    message: str = ""
    retry_after: Optional[float] = None
    status_code: Optional[int] = None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given in seconds.

    HTTP-date values are not honoured and yield ``None`` so the regular
    backoff applies instead.
    """
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        logger.debug(f"Ignoring non-numeric Retry-After header: {value!r}")
        return None
    return max(0.0, seconds)


def classify(error: BaseException, response: Optional[httpx.Response] = None) -> ClassifiedError:
    """
    Classify a failure.

    Args:
        error: The exception raised by the call
        response: The HTTP response, when one was received. Taken from
            ``httpx.HTTPStatusError`` automatically when not given.

    Returns:
        ClassifiedError describing kind and retry eligibility
    """
    if response is None and isinstance(error, httpx.HTTPStatusError):
        response = error.response

    message = str(error) or error.__class__.__name__

    if response is not None:
        status = response.status_code
        if status == 429:
            return ClassifiedError(
                kind=ErrorKind.RATE_LIMIT,
                retryable=True,
                message=message,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                status_code=status,
            )
        if status >= 500:
            return ClassifiedError(ErrorKind.SERVER_ERROR, True, message, status_code=status)
        if status in (401, 403):
            return ClassifiedError(ErrorKind.AUTH, False, message, status_code=status)
        if status >= 400:
            return ClassifiedError(ErrorKind.CLIENT_ERROR, False, message, status_code=status)

    # Timeouts first: httpx timeouts are also transport errors
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ClassifiedError(ErrorKind.TIMEOUT, True, message)

    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ClassifiedError(ErrorKind.NETWORK, True, message)

    return ClassifiedError(ErrorKind.PERMANENT, False, message)
