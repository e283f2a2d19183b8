"""Classified exceptions for asanawise."""

from enum import Enum
from typing import Optional, Any, Dict


class ErrorKind(str, Enum):
    """Closed set of failure categories."""
    INVALID_RESPONSE = "invalid_response"
    RATE_LIMITED = "rate_limited"
    CREDENTIAL_INVALID = "credential_invalid"
    API_ERROR = "api_error"
    TRANSPORT_ERROR = "transport_error"
    TIMEOUT = "timeout"


class AsanaWiseError(Exception):
    """Base exception for all asanawise errors."""

    kind: ErrorKind = ErrorKind.API_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.cause = cause
        self.method = method
        self.url = url
        super().__init__(message)


class InvalidResponse(AsanaWiseError):
    """Raised when a response body is not a structured JSON document."""

    kind = ErrorKind.INVALID_RESPONSE

    def __init__(self, message: str = "Invalid JSON response from Asana API.", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class RateLimited(AsanaWiseError):
    """Raised on HTTP 429 once retries are exhausted."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after: Optional[float] = None,
        retry_after_header: Optional[str] = None,
        attempts: int = 1,
        **kwargs: Any,
    ) -> None:
        self.retry_after = retry_after
        self.retry_after_header = retry_after_header
        self.attempts = attempts
        kwargs.setdefault("status_code", 429)
        if message is None:
            if retry_after is not None:
                message = f"Rate limit exceeded. Please retry after {retry_after:g} seconds."
            else:
                message = "Rate limit exceeded."
        super().__init__(message, **kwargs)


class CredentialInvalid(AsanaWiseError):
    """Raised when no usable credential exists until new ones are installed."""

    kind = ErrorKind.CREDENTIAL_INVALID

    def __init__(self, message: str = "Credential is invalid; install new credentials", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ApiError(AsanaWiseError):
    """Raised when the API answers with a non-2xx status."""

    kind = ErrorKind.API_ERROR


class TransportError(AsanaWiseError):
    """Raised when the request fails without a usable response."""

    kind = ErrorKind.TRANSPORT_ERROR


class RequestTimeout(AsanaWiseError):
    """Raised when a request or its retry budget times out."""

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str = "Request timed out",
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        self.timeout = timeout
        super().__init__(message, **kwargs)
