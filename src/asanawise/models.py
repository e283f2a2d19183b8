"""Pydantic models for asanawise configuration, requests and responses."""

import time
from enum import Enum
from typing import Optional, Dict, Any, List, Mapping, Sequence, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


DEFAULT_BASE_URL = "https://app.asana.com/api/1.0"
DEFAULT_TOKEN_URL = "https://app.asana.com/-/oauth_token"
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 1

RESPONSE_FULL = 1
RESPONSE_NORMAL = 2
RESPONSE_DATA = 3


class HTTPMethod(str, Enum):
    """HTTP methods."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class ResultShape(str, Enum):
    """Level of response detail returned by the engine."""
    FULL = "full"
    NORMAL = "normal"
    DATA = "data"

    @classmethod
    def coerce(cls, value: Union["ResultShape", str, int, None]) -> "ResultShape":
        """Accept an enum member, its value, or a legacy integer flag."""
        if value is None:
            return cls.DATA
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            legacy = {
                RESPONSE_FULL: cls.FULL,
                RESPONSE_NORMAL: cls.NORMAL,
                RESPONSE_DATA: cls.DATA,
            }
            if value not in legacy:
                raise ValueError(f"Unknown response type: {value}")
            return legacy[value]
        return cls(str(value).lower())


class Credential(BaseModel):
    """OAuth2 bearer credential.

    Instances are immutable; a refresh produces a new ``Credential``.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[float] = Field(
        default=None, description="Absolute UNIX timestamp; None never expires"
    )
    token_type: str = "bearer"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_token_response(
        cls,
        payload: Mapping[str, Any],
        previous: Optional["Credential"] = None,
        now: Optional[float] = None,
    ) -> "Credential":
        """Build a credential from an OAuth token endpoint response.

        Args:
            payload: Decoded token endpoint JSON.
            previous: Credential being replaced; its refresh token is kept
                when the response does not issue a new one.
            now: Current timestamp, defaults to ``time.time()``.

        Returns:
            New credential.
        """
        now = time.time() if now is None else now
        expires_in = payload.get("expires_in")
        expires_at = now + float(expires_in) if expires_in is not None else None

        refresh_token = payload.get("refresh_token")
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token

        metadata = payload.get("data")
        if not isinstance(metadata, dict):
            metadata = {}

        return cls(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            expires_at=expires_at,
            token_type=str(payload.get("token_type") or "bearer"),
            metadata=metadata,
        )

    def seconds_until_expiry(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds left before expiry, or None for non-expiring tokens."""
        if self.expires_at is None:
            return None
        now = time.time() if now is None else now
        return self.expires_at - now

    def is_expired(self, now: Optional[float] = None) -> bool:
        remaining = self.seconds_until_expiry(now)
        return remaining is not None and remaining <= 0

    def authorization_header(self) -> Dict[str, str]:
        """Get authorization header."""
        return {"Authorization": f"Bearer {self.access_token}"}


ParamsInput = Union[Mapping[str, Any], Sequence[Tuple[str, Any]], None]


def _ordered_params(value: ParamsInput) -> Tuple[Tuple[str, Any], ...]:
    if value is None:
        return ()
    items = list(value.items()) if isinstance(value, Mapping) else [tuple(p) for p in value]
    seen = set()
    for item in items:
        if len(item) != 2:
            raise ValueError(f"Query parameter must be a (key, value) pair: {item!r}")
        if item[0] in seen:
            raise ValueError(f"Duplicate query parameter: {item[0]}")
        seen.add(item[0])
    return tuple((str(k), v) for k, v in items)


class RequestOptions(BaseModel):
    """Per-call options: query parameters, JSON body and extra headers."""

    model_config = ConfigDict(extra="forbid")

    params: Tuple[Tuple[str, Any], ...] = Field(
        default=(), validation_alias=AliasChoices("params", "query")
    )
    body: Optional[Any] = Field(
        default=None, validation_alias=AliasChoices("body", "json")
    )
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def validate_params(cls, v: ParamsInput) -> Tuple[Tuple[str, Any], ...]:
        """Keep parameter order and reject duplicate keys."""
        return _ordered_params(v)

    def as_dict(self) -> Dict[str, Any]:
        """Options in the plain form echoed back by FULL responses."""
        options: Dict[str, Any] = {}
        if self.params:
            options["query"] = dict(self.params)
        if self.body is not None:
            options["json"] = self.body
        if self.headers:
            options["headers"] = dict(self.headers)
        return options


class RequestDescriptor(BaseModel):
    """Immutable description of a single logical API call."""

    model_config = ConfigDict(frozen=True)

    method: HTTPMethod
    path: str
    params: Tuple[Tuple[str, Any], ...] = ()
    body: Optional[Any] = None
    headers: Tuple[Tuple[str, str], ...] = ()
    result_shape: ResultShape = ResultShape.DATA

    @field_validator("method", mode="before")
    @classmethod
    def validate_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure path is relative to the API base URL."""
        if "://" in v:
            raise ValueError(f"Path must be relative to the API base URL: {v}")
        return v.lstrip("/")

    @classmethod
    def build(
        cls,
        method: Union[str, HTTPMethod],
        path: str,
        options: Union[RequestOptions, Mapping[str, Any], None] = None,
        result_shape: Union[ResultShape, str, int, None] = ResultShape.DATA,
    ) -> "RequestDescriptor":
        """Create a descriptor from caller-supplied options."""
        if options is None:
            options = RequestOptions()
        elif not isinstance(options, RequestOptions):
            options = RequestOptions(**dict(options))
        return cls(
            method=method,
            path=path,
            params=options.params,
            body=options.body,
            headers=tuple(options.headers.items()),
            result_shape=ResultShape.coerce(result_shape),
        )

    def options(self) -> RequestOptions:
        return RequestOptions(
            params=self.params, body=self.body, headers=dict(self.headers)
        )


class SanitizedRequest(BaseModel):
    """Request echo with secrets redacted."""

    method: str
    uri: str
    options: Dict[str, Any] = Field(default_factory=dict)


class FullResponse(BaseModel):
    """FULL result shape."""

    status: int
    reason: str = ""
    headers: Dict[str, List[str]] = Field(default_factory=dict)
    body: Any = None
    raw_body: str = ""
    request: SanitizedRequest


class ClientConfig(BaseModel):
    """Configuration for the request engine."""

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Base URL for API requests")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    connect_timeout: float = Field(default=5.0, gt=0, description="Connection timeout")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, le=10, description="Maximum retry attempts")
    initial_backoff: float = Field(default=DEFAULT_INITIAL_BACKOFF, gt=0, description="Fallback backoff base")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    max_connections: int = Field(default=100, ge=1, description="Max connection pool size")
    max_keepalive_connections: int = Field(default=20, ge=0, description="Max keepalive connections")
    user_agent: str = "asanawise/1.0"
    default_headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base_url doesn't end with slash."""
        return v.rstrip("/")


class OAuthConfig(BaseModel):
    """OAuth2 application settings used to refresh access tokens."""

    client_id: str
    client_secret: str
    token_url: str = DEFAULT_TOKEN_URL
    redirect_uri: Optional[str] = None
    refresh_margin: float = Field(default=60.0, ge=0, description="Refresh this many seconds before expiry")
    refresh_timeout: float = Field(default=10.0, gt=0)
    refresh_attempts: int = Field(default=2, ge=1, le=5)


class ClientStats(BaseModel):
    """Statistics for the client."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_retries: int = 0
    token_refreshes: int = 0

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests
