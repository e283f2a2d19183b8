"""Structured logging with credential redaction for asanawise."""

import copy
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Any, Mapping

REDACTION_MARKER = "[REDACTED]"


@dataclass
class LogConfig:
    """Configuration for logging behavior."""

    logger_name: str = "asanawise"
    log_request_headers: bool = False
    redact_headers: List[str] = field(
        default_factory=lambda: [
            "authorization",
            "proxy-authorization",
            "x-api-key",
            "cookie",
            "set-cookie",
        ]
    )
    redaction_marker: str = REDACTION_MARKER


def _redact_mapping(
    headers: Mapping[str, Any], redact_set: set, marker: str
) -> Dict[str, Any]:
    return {
        key: (marker if key.lower() in redact_set else value)
        for key, value in headers.items()
    }


def sanitize_options(
    options: Mapping[str, Any], marker: str = REDACTION_MARKER
) -> Dict[str, Any]:
    """Copy request options with the Authorization header redacted.

    The input is never modified; nested structures are deep-copied so the
    echo cannot alias the request seen by the transport.

    Args:
        options: Request options (``query``, ``json``, ``headers``...).
        marker: Replacement for the secret value.

    Returns:
        Sanitized copy of the options.
    """
    sanitized = copy.deepcopy(dict(options))
    headers = sanitized.get("headers")
    if isinstance(headers, Mapping):
        sanitized["headers"] = _redact_mapping(headers, {"authorization"}, marker)
    return sanitized


class RequestLogger:
    """Emits structured request lifecycle events with secrets redacted."""

    def __init__(
        self,
        config: Optional[LogConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize request logger.

        Args:
            config: Logging configuration.
            logger: Logger to write to instead of ``config.logger_name``.
        """
        self.config = config or LogConfig()
        self.logger = logger or logging.getLogger(self.config.logger_name)

    def redact_headers(self, headers: Mapping[str, Any]) -> Dict[str, Any]:
        """Redact sensitive headers.

        Args:
            headers: Request/response headers.

        Returns:
            New dictionary with sensitive values replaced.
        """
        redact_set = {h.lower() for h in self.config.redact_headers}
        return _redact_mapping(headers, redact_set, self.config.redaction_marker)

    def log_request(
        self,
        method: str,
        path: str,
        attempt: int,
        headers: Optional[Mapping[str, str]] = None,
        request_id: Optional[str] = None,
    ) -> None:
        """Log the start of a transport attempt."""
        extra: Dict[str, Any] = {
            "request_id": request_id,
            "method": method,
            "path": path,
            "attempt": attempt,
        }
        if self.config.log_request_headers and headers:
            extra["headers"] = self.redact_headers(headers)

        self.logger.debug(f"Making API request: {method} {path}", extra=extra)

    def log_success(
        self,
        method: str,
        path: str,
        status_code: int,
        attempt: int,
        duration: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> None:
        """Log a successful response."""
        extra: Dict[str, Any] = {
            "request_id": request_id,
            "method": method,
            "path": path,
            "status_code": status_code,
            "attempt": attempt,
        }
        message = f"API request successful: {method} {path} -> {status_code}"
        if duration is not None:
            extra["duration_seconds"] = duration
            message += f" ({duration:.3f}s)"

        self.logger.debug(message, extra=extra)

    def log_rate_limited(
        self,
        method: str,
        path: str,
        attempt: int,
        max_retries: int,
        delay: float,
        request_id: Optional[str] = None,
    ) -> None:
        """Log a rate-limited attempt that will be retried."""
        self.logger.warning(
            f"Rate limit exceeded, retrying request {attempt}/{max_retries} after {delay:.2f}s",
            extra={
                "request_id": request_id,
                "method": method,
                "path": path,
                "status_code": 429,
                "attempt": attempt,
                "max_retries": max_retries,
                "delay_seconds": delay,
            },
        )

    def log_failure(
        self,
        error: Exception,
        method: str,
        path: str,
        attempt: int,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> None:
        """Log a terminal request failure."""
        self.logger.error(
            f"API request failed: {method} {path}: {error}",
            extra={
                "request_id": request_id,
                "method": method,
                "path": path,
                "attempt": attempt,
                "status_code": status_code,
                "error_type": type(error).__name__,
            },
        )


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
) -> None:
    """Set up logging for asanawise.

    Args:
        level: Log level.
        format_string: Custom format string.
    """
    if format_string is None:
        format_string = (
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        )

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string,
    )
