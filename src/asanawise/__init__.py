"""
asanawise - Resilient request and session engine for the Asana API.

A client core featuring:
- Bearer authentication with proactive, coalesced OAuth token refresh
- Retry of rate-limited requests honouring Retry-After
- FULL / NORMAL / DATA result shapes
- Secure logging with credential redaction
"""

from asanawise.client import AsanaClient
from asanawise.async_client import AsyncAsanaClient
from asanawise.auth import TokenManager, AsyncTokenManager, TokenState
from asanawise.retry import (
    RetryConfig,
    RetryController,
    RetryDecision,
    RetryState,
    parse_retry_after,
)
from asanawise.models import (
    ClientConfig,
    ClientStats,
    Credential,
    FullResponse,
    OAuthConfig,
    RequestOptions,
    ResultShape,
    RESPONSE_FULL,
    RESPONSE_NORMAL,
    RESPONSE_DATA,
)
from asanawise.exceptions import (
    ErrorKind,
    AsanaWiseError,
    InvalidResponse,
    RateLimited,
    CredentialInvalid,
    ApiError,
    TransportError,
    RequestTimeout,
)
from asanawise.logging import LogConfig, RequestLogger

__version__ = "1.0.0"
__author__ = "asanawise Contributors"

__all__ = [
    # Clients
    "AsanaClient",
    "AsyncAsanaClient",
    # Tokens
    "TokenManager",
    "AsyncTokenManager",
    "TokenState",
    "Credential",
    "OAuthConfig",
    # Retry
    "RetryConfig",
    "RetryController",
    "RetryDecision",
    "RetryState",
    "parse_retry_after",
    # Models
    "ClientConfig",
    "ClientStats",
    "FullResponse",
    "RequestOptions",
    "ResultShape",
    "RESPONSE_FULL",
    "RESPONSE_NORMAL",
    "RESPONSE_DATA",
    # Exceptions
    "ErrorKind",
    "AsanaWiseError",
    "InvalidResponse",
    "RateLimited",
    "CredentialInvalid",
    "ApiError",
    "TransportError",
    "RequestTimeout",
    # Logging
    "LogConfig",
    "RequestLogger",
]
