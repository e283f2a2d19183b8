"""Asynchronous asanawise request engine."""

import asyncio
import time
import uuid
import logging
from typing import Optional, Dict, Any, Awaitable, Callable

import httpx

from asanawise.auth import AsyncTokenManager
from asanawise.classifier import classify_transport_error, is_success
from asanawise.client import BaseAsanaClient, OptionsArg, ShapeArg
from asanawise.exceptions import AsanaWiseError
from asanawise.logging import LogConfig
from asanawise.models import (
    ClientConfig,
    Credential,
    OAuthConfig,
    RequestDescriptor,
    RequestOptions,
    ResultShape,
)
from asanawise.retry import RetryState


class AsyncAsanaClient(BaseAsanaClient):
    """Async Asana API client.

    Features:
    - Bearer authentication with proactive, coalesced token refresh
    - Automatic retry of rate-limited (429) requests honouring Retry-After
    - FULL / NORMAL / DATA result shapes
    - Full async/await support; retry waits never block other calls
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        credential: Optional[Credential] = None,
        oauth: Optional[OAuthConfig] = None,
        token_manager: Optional[AsyncTokenManager] = None,
        config: Optional[ClientConfig] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        timeout: Optional[float] = None,
        log_config: Optional[LogConfig] = None,
        logger: Optional[logging.Logger] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        """Initialize async Asana client."""
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
                token_manager = AsyncTokenManager(credential, oauth=oauth)
            elif access_token is not None:
                token_manager = AsyncTokenManager.from_access_token(access_token, oauth=oauth)
            else:
                raise ValueError("An access token, credential or token manager is required")
        self.token_manager = token_manager
        self._sleep = sleep or asyncio.sleep

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
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

    async def get_valid_credential(self, timeout: Optional[float] = None) -> Credential:
        return await self.token_manager.get_valid_credential(timeout=timeout)

    async def execute(
        self,
        method: str,
        path: str,
        options: OptionsArg = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send an authenticated request and shape its response.

        See ``AsanaClient.execute``.
        """
        descriptor = RequestDescriptor.build(method, path, options, result_shape)
        request_id = str(uuid.uuid4())[:8]
        state = self.retry_controller.new_state()

        try:
            return await self._execute(descriptor, state, request_id, timeout)
        except AsanaWiseError as error:
            self._log_failure(error, descriptor, state, request_id)
            raise
        finally:
            self._record_retry_delays(state)

    request = execute

    async def _execute(
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
            credential = await self.token_manager.get_valid_credential(
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
                response = await self._client.request(
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
            await self._sleep(decision.delay)
            state.advance(decision.delay)

    async def get(
        self,
        path: str,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make async GET request."""
        options = RequestOptions(params=params, headers=headers or {})
        return await self.execute("GET", path, options, result_shape, timeout)

    async def post(
        self,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make async POST request."""
        options = RequestOptions(params=params, body=json, headers=headers or {})
        return await self.execute("POST", path, options, result_shape, timeout)

    async def put(
        self,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make async PUT request."""
        options = RequestOptions(params=params, body=json, headers=headers or {})
        return await self.execute("PUT", path, options, result_shape, timeout)

    async def patch(
        self,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make async PATCH request."""
        options = RequestOptions(params=params, body=json, headers=headers or {})
        return await self.execute("PATCH", path, options, result_shape, timeout)

    async def delete(
        self,
        path: str,
        params: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        result_shape: ShapeArg = ResultShape.DATA,
        timeout: Optional[float] = None,
    ) -> Any:
        """Make async DELETE request."""
        options = RequestOptions(params=params, headers=headers or {})
        return await self.execute("DELETE", path, options, result_shape, timeout)

    async def aclose(self) -> None:
        """Close the HTTP client and any token manager this client created."""
        if self._owns_client:
            await self._client.aclose()
        if self._owns_token_manager:
            await self.token_manager.aclose()

    async def __aenter__(self) -> "AsyncAsanaClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
