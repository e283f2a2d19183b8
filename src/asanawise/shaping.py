"""Response shaping: decode a raw response into the requested result shape."""

import json
from typing import Any, Dict, List, Mapping, Optional, Union

from asanawise.exceptions import InvalidResponse
from asanawise.logging import sanitize_options
from asanawise.models import FullResponse, ResultShape, SanitizedRequest


def decode_body(raw_body: Union[str, bytes], **error_context: Any) -> Union[Dict[str, Any], List[Any]]:
    """Decode a response body that must be a JSON object or array.

    Args:
        raw_body: Raw response text.
        **error_context: Extra fields for the raised error (status_code,
            method, url).

    Returns:
        Decoded document.

    Raises:
        InvalidResponse: If the body is not JSON or decodes to a scalar.
    """
    try:
        decoded = json.loads(raw_body)
    except (ValueError, TypeError) as e:
        raise InvalidResponse(cause=e, **error_context) from e

    if not isinstance(decoded, (dict, list)):
        raise InvalidResponse(**error_context)
    return decoded


def normalize_headers(headers: Any) -> Dict[str, List[str]]:
    """Group header values by name, preserving repeated headers."""
    items = headers.multi_items() if hasattr(headers, "multi_items") else headers.items()
    grouped: Dict[str, List[str]] = {}
    for key, value in items:
        values = value if isinstance(value, list) else [value]
        grouped.setdefault(key, []).extend(values)
    return grouped


def shape_full(
    status: int,
    reason: str,
    headers: Any,
    decoded: Any,
    raw_body: str,
    method: str,
    uri: str,
    options: Optional[Mapping[str, Any]] = None,
) -> FullResponse:
    """Everything about the response plus a redacted echo of the request."""
    return FullResponse(
        status=status,
        reason=reason,
        headers=normalize_headers(headers),
        body=decoded,
        raw_body=raw_body,
        request=SanitizedRequest(
            method=method,
            uri=uri,
            options=sanitize_options(options or {}),
        ),
    )


def shape_normal(decoded: Any) -> Any:
    """Decoded body verbatim, pagination and sync fields included."""
    return decoded


def shape_data(decoded: Any) -> Any:
    """The ``data`` member when present, otherwise the whole body."""
    if isinstance(decoded, dict) and "data" in decoded:
        return decoded["data"]
    return decoded


def shape_response(
    shape: ResultShape,
    status: int,
    reason: str,
    headers: Any,
    raw_body: str,
    method: str,
    uri: str,
    options: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Decode ``raw_body`` and build the result for ``shape``.

    Raises:
        InvalidResponse: If the body is not a structured JSON document.
    """
    decoded = decode_body(raw_body, status_code=status, method=method, url=uri)

    if shape == ResultShape.FULL:
        return shape_full(status, reason, headers, decoded, raw_body, method, uri, options)
    if shape == ResultShape.NORMAL:
        return shape_normal(decoded)
    return shape_data(decoded)
