"""Synchronous asanawise request engine."""

import threading
import time
import uuid
import logging
from typing import Optional, Dict, Any, Callable, List, Mapping, Union
from urllib.parse import urljoin

import httpx

from asanawise.auth import TokenManager
from asanawise.classifier import classify_response, classify_transport_error, is_success
from asanawise.exceptions import AsanaWiseError, RequestTimeout
from asanawise.logging import RequestLogger, LogConfig
from asanawise.models import (
    ClientConfig,
    ClientStats,
    Credential,
    OAuthConfig,
    RequestDescriptor,
    RequestOptions,
    ResultShape,
)
from asanawise.retry import RetryConfig, RetryController, RetryState
from asanawise.shaping import shape_response

ShapeArg = Union[ResultShape, str, int]
OptionsArg = Union[RequestOptions, Mapping[str, Any], None]


class BaseAsanaClient:
    """Configuration, header composition and bookkeeping shared by both clients."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        timeout: Optional[float] = None,
        log_config: Optional[LogConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        overrides = {
            "base_url": base_url,
            "max_retries": max_retries,
            "initial_backoff": initial_backoff,
            "timeout": timeout,
        }
        config = config or ClientConfig()
        self.config = ClientConfig(
            **{
                **config.model_dump(),
                **{k: v for k, v in overrides.items() if v is not None},
            }
        )

        self.retry_controller = RetryController(
            RetryConfig(
                max_retries=self.config.max_retries,
                initial_backoff=self.config.initial_backoff,
            )
        )
        self.request_logger = RequestLogger(log_config, logger=logger)
        self._stats = ClientStats()
        self._stats_lock = threading.Lock()
        self._retry_delays: List[float] = []

    @property
    def base_url(self) -> str:
        return self.config.base_url

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    @property
    def logger(self) -> logging.Logger:
        """Logger receiving request lifecycle events."""
        return self.request_logger.logger

    def set_logger(self, logger: logging.Logger) -> "BaseAsanaClient":
        """Send request lifecycle events to another logger."""
        self.request_logger.logger = logger
        return self

    def _build_url(self, path: str) -> str:
        """Build full URL from a relative resource path."""
        return urljoin(self.base_url + "/", path.lstrip("/"))

    def _full_uri(self, url: str, descriptor: RequestDescriptor) -> str:
        if not descriptor.params:
            return url
        return str(httpx.URL(url, params=list(descriptor.params)))

    def _compose_headers(
        self, descriptor: RequestDescriptor, credential: Credential
    ) -> Dict[str, str]:
        """Default, caller and auth headers; the bearer token always wins."""
        headers = {
            "Accept": "application/json",
            "User-Agent": self.config.user_agent,
        }
        headers.update(self.config.default_headers)
        headers.update(dict(descriptor.headers))
        headers = {k: v for k, v in headers.items() if k.lower() != "authorization"}
        headers.update(credential.authorization_header())
        return headers

    def _echo_options(
        self, descriptor: RequestDescriptor, headers: Mapping[str, str]
    ) -> Dict[str, Any]:
        options = descriptor.options().as_dict()
        options["headers"] = dict(headers)
        return options

    def _transport_timeout(
        self,
        deadline: Optional[float],
        timeout: Optional[float],
        method: str,
        url: str,
    ) -> httpx.Timeout:
        request_timeout = self.config.timeout
        remaining = self._remaining(deadline)
        if remaining is not None:
            if remaining <= 0:
                raise RequestTimeout(timeout=timeout, method=method, url=url)
            request_timeout = min(request_timeout, remaining)
        return httpx.Timeout(
            request_timeout, connect=min(self.config.connect_timeout, request_timeout)
        )

    def _check_retry_budget(
        self,
        delay: float,
        deadline: Optional[float],
        timeout: Optional[float],
        method: str,
        url: str,
    ) -> None:
        remaining = self._remaining(deadline)
        if remaining is not None and delay > remaining:
            raise RequestTimeout(
                f"Retry wait of {delay:g}s exceeds the remaining timeout",
                timeout=timeout,
                method=method,
                url=url,
            )

    @staticmethod
    def _deadline(timeout: Optional[float]) -> Optional[float]:
        return time.monotonic() + timeout if timeout is not None else None

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return deadline - time.monotonic()

    def _count(self, **increments: int) -> None:
        with self._stats_lock:
            for name, value in increments.items():
                setattr(self._stats, name, getattr(self._stats, name) + value)

    def _handle_success(
        self,
        response: httpx.Response,
        descriptor: RequestDescriptor,
        url: str,
        headers: Mapping[str, str],
        state: RetryState,
        duration: float,
        request_id: str,
    ) -> Any:
        method = descriptor.method.value
        result = shape_response(
            descriptor.result_shape,
            status=response.status_code,
            reason=response.reason_phrase,
            headers=response.headers,
            raw_body=response.text,
            method=method,
            uri=self._full_uri(url, descriptor),
            options=self._echo_options(descriptor, headers),
        )
        self.request_logger.log_success(
            method=method,
            path=descriptor.path,
            status_code=response.status_code,
            attempt=state.total_attempts,
            duration=duration,
            request_id=request_id,
        )
        self._count(successful_requests=1)
        return result

    def _classify(
        self, response: httpx.Response, descriptor: RequestDescriptor, url: str
    ) -> AsanaWiseError:
        return classify_response(
            response.status_code,
            response.reason_phrase,
            response.headers,
            response.text,
            descriptor.method.value,
            self._full_uri(url, descriptor),
        )

    def _log_failure(
        self,
        error: AsanaWiseError,
        descriptor: RequestDescriptor,
        state: RetryState,
        request_id: str,
    ) -> None:
        self.request_logger.log_failure(
            error,
            method=descriptor.method.value,
            path=descriptor.path,
            attempt=state.total_attempts,
            status_code=error.status_code,
            request_id=request_id,
        )
        self._count(failed_requests=1)

    def _record_retry_delays(self, state: RetryState) -> None:
        with self._stats_lock:
            self._retry_delays = list(state.delays)

    def get_retry_delays(self) -> List[float]:
        """Get retry delays from the most recent call."""
        with self._stats_lock:
            return self._retry_delays.copy()

    def get_stats(self) -> ClientStats:
        """Get a snapshot of client statistics."""
        with self._stats_lock:
            stats = self._stats.model_copy()
        stats.token_refreshes = self.token_manager.refresh_count
        return stats

    def reset_stats(self) -> None:
        """Reset all statistics."""
        with self._stats_lock:
            self._stats = ClientStats()


class AsanaClient(BaseAsanaClient):
    """Thread-safe Asana API client.

    Features:
    - Bearer authentication with proactive, coalesced token refresh
    - Automatic retry of rate-limited (429) requests honouring Retry-After
    - FULL / NORMAL / DATA result shapes
    - Structured logging with credential redaction
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        credential: Optional[Credential] = None,
        oauth: Optional[OAuthConfig] = None,
        token_manager: Optional[TokenManager] = None,
        config: Optional[ClientConfig] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        timeout: Optional[float] = None,
        log_config: Optional[LogConfig] = None,
        logger: Optional[logging.Logger] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize Asana client.

        Args:
            access_token: Static access token (personal access token).
            credential: OAuth credential, refreshed through ``oauth``.
            oauth: OAuth application settings.
            token_manager: Pre-built token manager, shared between clients.
            config: Engine configuration.
            base_url: Overrides ``config.base_url``.
            max_retries: Overrides ``config.max_retries``.
            initial_backoff: Overrides ``config.initial_backoff``.
            timeout: Overrides ``config.timeout``.
            log_config: Logging configuration.
            logger: Logger for request events.
            http_client: httpx client to use instead of creating one.
            sleep: Sleep used for retry backoff.
        """
        super().__init__(
            config=config,
            base_url=base_url,
            max_retries=max_retries,
            initial_backoff=initial_backoff,
            timeout=timeout,
            log_config=log_config,
            logger=logger,
        )
        self._owns_token_manager = token_manager is None
        if token_manager is None:
            if credential is not None:
                token_manager = TokenManager(credential, oauth=oauth)
            elif access_token is not None:
                token_manager = TokenManager.from_access_token(access_token, oauth=oauth)
            else:
                raise ValueError("An access token, credential or token manager is required")
        self.token_manager = token_manager
        self._sleep = sleep

        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout, connect=self.config.connect_timeout),
            verify=self.config.verify_ssl,
            limits=httpx.Limits(
                max_connections=self.config.max_connections,
                max_keepalive_connections=self.config.max_keepalive_connections,
            ),
        )

    def on_token_refresh(self, callback: Callable[[Credential], None]) -> None:
        """Register a callback receiving each refreshed credential."""
        self.token_manager.on_token_refresh(callback)

    def get_valid_credential(self, timeout: Optional[float] = None) -> Credential:
        return self.token_manager.get_valid_credential(timeout=timeout)

    def execute(
        self,
        method: str,
        path: str,
        options: OptionsArg = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send an authenticated request and shape its response.

        Rate-limited requests are retried up to ``max_retries`` times.

        Args:
            method: HTTP method.
            path: Resource path relative to the API base URL.
            options: Query parameters, JSON body and extra headers.
            result_shape: FULL, NORMAL or DATA (default).
            timeout: Bound in seconds on the whole call, retry waits included.

        Returns:
            The response in the requested shape.

        Raises:
            InvalidResponse: Body is not a structured JSON document.
            RateLimited: Still rate limited after all retries.
            CredentialInvalid: No usable credential.
            ApiError: Any other non-2xx response.
            TransportError: Network failure.
            RequestTimeout: The transport call or the retry budget timed out.
        """
        descriptor = RequestDescriptor.build(method, path, options, result_shape)
        request_id = str(uuid.uuid4())[:8]
        state = self.retry_controller.new_state()

        try:
            return self._execute(descriptor, state, request_id, timeout)
        except AsanaWiseError as error:
            self._log_failure(error, descriptor, state, request_id)
            raise
        finally:
            self._record_retry_delays(state)

    request = execute

    def _execute(
        self,
        descriptor: RequestDescriptor,
        state: RetryState,
        request_id: str,
        timeout: Optional[float],
    ) -> Any:
        method = descriptor.method.value
        url = self._build_url(descriptor.path)
        deadline = self._deadline(timeout)

        while True:
            credential = self.token_manager.get_valid_credential(
                timeout=self._remaining(deadline)
            )
            headers = self._compose_headers(descriptor, credential)
            transport_timeout = self._transport_timeout(deadline, timeout, method, url)

            self.request_logger.log_request(
                method=method,
                path=descriptor.path,
                attempt=state.total_attempts,
                headers=headers,
                request_id=request_id,
            )
            self._count(total_requests=1)

            start_time = time.time()
            try:
                response = self._client.request(
                    method=method,
                    url=url,
                    params=list(descriptor.params) or None,
                    headers=headers,
                    json=descriptor.body,
                    timeout=transport_timeout,
                )
            except httpx.RequestError as e:
                raise classify_transport_error(e, method, url, timeout=timeout) from e
            duration = time.time() - start_time

            if is_success(response.status_code):
                return self._handle_success(
                    response, descriptor, url, headers, state, duration, request_id
                )

            decision = self.retry_controller.should_retry(
                self._classify(response, descriptor, url), state
            )
            if not decision.should_retry:
                raise decision.error

            self._check_retry_budget(decision.delay, deadline, timeout, method, url)
            self.request_logger.log_rate_limited(
                method=method,
                path=descriptor.path,
                attempt=state.attempt + 1,
                max_retries=state.max_retries,
                delay=decision.delay,
                request_id=request_id,
            )
            self._count(total_retries=1)
            self._sleep(decision.delay)
            state.advance(decision.delay)

    def get(
        self,
        path: str,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make GET request."""
        options = RequestOptions(params=params, headers=headers or {})
        return self.execute("GET", path, options, result_shape, timeout)

    def post(
        self,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make POST request."""
        options = RequestOptions(params=params, body=json, headers=headers or {})
        return self.execute("POST", path, options, result_shape, timeout)

    def put(
        self,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make PUT request."""
        options = RequestOptions(params=params, body=json, headers=headers or {})
        return self.execute("PUT", path, options, result_shape, timeout)

    def patch(
        self,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make PATCH request."""
        options = RequestOptions(params=params, body=json, headers=headers or {})
        return self.execute("PATCH", path, options, result_shape, timeout)

    def delete(
        self,
        path: str,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make DELETE request."""
        options = RequestOptions(params=params, headers=headers or {})
        return self.execute("DELETE", path, options, result_shape, timeout)

    def close(self) -> None:
        """Close the HTTP client and any token manager this client created."""
        if self._owns_client:
            self._client.close()
        if self._owns_token_manager:
            self.token_manager.close()

    def __enter__(self) -> "AsanaClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
