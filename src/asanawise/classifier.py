"""Map HTTP and transport outcomes onto the closed error taxonomy."""

import json
from typing import Any, Optional

import httpx

from asanawise.exceptions import (
    AsanaWiseError,
    ApiError,
    InvalidResponse,
    RateLimited,
    RequestTimeout,
    TransportError,
)


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _try_decode(raw_body: str) -> Any:
    try:
        return json.loads(raw_body)
    except ValueError:
        return None


def _api_error_message(
    decoded: Any,
    status_code: int,
    reason: str,
    method: str,
    url: str,
) -> Optional[str]:
    """Asana-style message built from ``errors[0]``, or None."""
    if not isinstance(decoded, dict):
        return None
    errors = decoded.get("errors")
    if not isinstance(errors, list) or not errors or not isinstance(errors[0], dict):
        return None
    first = errors[0]
    if "message" not in first:
        return None

    return (
        f"{method} {url}\nresulted in a {status_code} {reason}  : \n"
        f"{first['message']}\n{first.get('help', '')}"
    )


def classify_response(
    status_code: int,
    reason: str,
    headers: Any,
    raw_body: str,
    method: str,
    url: str,
) -> AsanaWiseError:
    """Classify a non-2xx response.

    A non-empty body that is not JSON is always ``InvalidResponse``. Status
    429 becomes ``RateLimited``; everything else becomes ``ApiError``.

    Args:
        status_code: HTTP status code.
        reason: Reason phrase.
        headers: Response headers.
        raw_body: Response text.
        method: HTTP method of the request.
        url: Full request URL.

    Returns:
        The classified error, not raised.
    """
    decoded = _try_decode(raw_body) if raw_body.strip() else None
    if raw_body.strip() and not isinstance(decoded, (dict, list)):
        return InvalidResponse(status_code=status_code, method=method, url=url)

    details = decoded if isinstance(decoded, dict) else {}

    if status_code == 429:
        return RateLimited(
            retry_after_header=headers.get("Retry-After"),
            details=details,
            method=method,
            url=url,
        )

    message = _api_error_message(decoded, status_code, reason, method, url)
    if message is None:
        message = raw_body if raw_body.strip() else f"{status_code} {reason}".strip()

    return ApiError(
        message,
        status_code=status_code,
        details=details,
        method=method,
        url=url,
    )


def classify_transport_error(
    exc: httpx.RequestError,
    method: str,
    url: str,
    timeout: Optional[float] = None,
) -> AsanaWiseError:
    """Wrap an httpx failure that produced no usable response."""
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeout(
            message=str(exc) or "Request timed out",
            timeout=timeout,
            cause=exc,
            method=method,
            url=url,
        )
    return TransportError(
        str(exc) or type(exc).__name__,
        cause=exc,
        method=method,
        url=url,
    )
