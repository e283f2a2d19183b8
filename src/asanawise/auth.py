"""OAuth2 access-token lifecycle for asanawise.

A token manager owns the only piece of state shared between concurrent
calls: the current ``Credential``. It hands out live credentials, refreshes
them shortly before they expire, and makes sure at most one refresh
exchange is in flight at a time.

State machine::

    VALID -> EXPIRING/EXPIRED -> REFRESHING -> VALID
                                            \\-> INVALID (until install_credential)
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from tenacity import (
    AsyncRetrying,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_before_delay,
    wait_exponential,
)

from asanawise.classifier import is_success
from asanawise.exceptions import CredentialInvalid, RequestTimeout
from asanawise.models import Credential, OAuthConfig

logger = logging.getLogger(__name__)

TokenListener = Callable[[Credential], None]


class TokenState(str, Enum):
    """Credential lifecycle states."""
    VALID = "valid"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    REFRESHING = "refreshing"
    INVALID = "invalid"


class _TokenManagerBase:
    """State and refresh-exchange plumbing shared by both managers."""

    def __init__(
        self,
        credential: Credential,
        oauth: Optional[OAuthConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.oauth = oauth
        self._credential = credential
        self._clock = clock
        self._invalid: Optional[CredentialInvalid] = None
        self._generation = 0
        self._listeners: List[TokenListener] = []
        self.refresh_count = 0

    @classmethod
    def from_access_token(cls, access_token: str, **kwargs: Any):
        """Manager around a static token that never expires or refreshes."""
        return cls(Credential(access_token=access_token), **kwargs)

    @property
    def refresh_margin(self) -> float:
        return self.oauth.refresh_margin if self.oauth else 0.0

    def _state_at(self, now: float, refreshing: bool) -> TokenState:
        if self._invalid is not None:
            return TokenState.INVALID
        if refreshing:
            return TokenState.REFRESHING
        remaining = self._credential.seconds_until_expiry(now)
        if remaining is None:
            return TokenState.VALID
        if remaining <= 0:
            return TokenState.EXPIRED
        if remaining <= self.refresh_margin:
            return TokenState.EXPIRING
        return TokenState.VALID

    def on_token_refresh(self, listener: TokenListener) -> None:
        """Register a callback invoked with each newly refreshed credential."""
        self._listeners.append(listener)

    def remove_token_listener(self, listener: TokenListener) -> None:
        """Remove a refresh listener."""
        self._listeners.remove(listener)

    def _install(self, credential: Credential) -> None:
        self._credential = credential
        self._invalid = None
        self._generation += 1

    def _notify(self, credential: Credential) -> None:
        for listener in list(self._listeners):
            try:
                listener(credential)
            except Exception as e:
                logger.error(f"Error in token refresh listener: {e}", exc_info=True)

    def _refresh_request(self, current: Credential) -> Tuple[str, Dict[str, str]]:
        """Token endpoint URL and form data for a refresh_token grant."""
        if self.oauth is None:
            raise CredentialInvalid("No OAuth client configured to refresh the access token")
        if not current.refresh_token:
            raise CredentialInvalid("No refresh token available")

        data = {
            "grant_type": "refresh_token",
            "client_id": self.oauth.client_id,
            "client_secret": self.oauth.client_secret,
            "refresh_token": current.refresh_token,
        }
        if self.oauth.redirect_uri:
            data["redirect_uri"] = self.oauth.redirect_uri
        return self.oauth.token_url, data

    def _retrying_kwargs(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        stop = stop_after_attempt(self.oauth.refresh_attempts)
        if timeout is not None:
            # Never start a backoff sleep that would outlast the caller.
            stop = stop | stop_before_delay(timeout)
        return {
            "stop": stop,
            "wait": wait_exponential(multiplier=0.5, max=5),
            "retry": retry_if_exception_type(httpx.NetworkError),
            "before_sleep": before_sleep_log(logger, logging.WARNING),
            "reraise": True,
        }

    def _credential_from_response(
        self, response: httpx.Response, current: Credential
    ) -> Credential:
        if not is_success(response.status_code):
            try:
                details = response.json()
            except ValueError:
                details = {}
            raise CredentialInvalid(
                f"Token refresh rejected with status {response.status_code}",
                status_code=response.status_code,
                details=details if isinstance(details, dict) else {},
                url=self.oauth.token_url,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise CredentialInvalid("Token endpoint returned invalid JSON", cause=e) from e
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise CredentialInvalid("Token endpoint response has no access_token")

        try:
            return Credential.from_token_response(payload, previous=current, now=self._clock())
        except (ValueError, TypeError) as e:
            raise CredentialInvalid(f"Malformed token endpoint response: {e}", cause=e) from e

    @staticmethod
    def _wrap_transport_error(exc: httpx.RequestError) -> CredentialInvalid:
        if isinstance(exc, httpx.TimeoutException):
            return CredentialInvalid("Token refresh timed out", cause=exc)
        return CredentialInvalid(f"Token refresh failed: {exc}", cause=exc)

    def _record_success(self, generation: int, credential: Credential) -> bool:
        """Install a refreshed credential unless one was installed meanwhile."""
        if generation != self._generation:
            return False
        self._install(credential)
        self.refresh_count += 1
        logger.info(
            "Access token refreshed",
            extra={"expires_at": credential.expires_at},
        )
        return True

    def _record_failure(self, generation: int, error: CredentialInvalid) -> None:
        logger.error(f"Token refresh failed: {error}")
        if generation == self._generation:
            self._invalid = error

    def _invalid_error(self) -> CredentialInvalid:
        return CredentialInvalid(
            f"Credential is invalid: {self._invalid.message}",
            status_code=self._invalid.status_code,
            details=self._invalid.details,
            cause=self._invalid,
        )


class TokenManager(_TokenManagerBase):
    """Thread-safe token manager.

    A ``threading.Lock`` guards the credential; it is never held across the
    refresh round trip. Callers that need a credential while a refresh is in
    flight wait on the same ``Future``.
    """

    def __init__(
        self,
        credential: Credential,
        oauth: Optional[OAuthConfig] = None,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize token manager.

        Args:
            credential: Initial credential.
            oauth: OAuth application settings; required to refresh.
            http_client: Client used for the token endpoint.
            clock: Source of the current UNIX time.
            sleep: Sleep used between refresh exchange retries.
        """
        super().__init__(credential, oauth, clock)
        self._lock = threading.Lock()
        self._refresh_future: Optional[Future] = None
        self._http = http_client
        self._owns_http = http_client is None
        self._sleep = sleep

    @property
    def state(self) -> TokenState:
        with self._lock:
            return self._state_at(self._clock(), self._refresh_future is not None)

    @property
    def credential(self) -> Credential:
        with self._lock:
            return self._credential

    def install_credential(self, credential: Credential) -> None:
        """Replace the credential out of band, leaving the INVALID state."""
        with self._lock:
            self._install(credential)

    def get_valid_credential(self, timeout: Optional[float] = None) -> Credential:
        """Return a live credential, refreshing it first when needed.

        Args:
            timeout: Upper bound in seconds for waiting on a refresh.

        Returns:
            Credential safe to use for the next request.

        Raises:
            CredentialInvalid: If the credential cannot be refreshed.
            RequestTimeout: If waiting for the refresh exceeds ``timeout``.
        """
        with self._lock:
            state = self._state_at(self._clock(), self._refresh_future is not None)
            if state == TokenState.INVALID:
                raise self._invalid_error()
            if state == TokenState.VALID:
                return self._credential
            future, leader, generation, current = self._begin_refresh()

        if leader:
            self._run_refresh(future, generation, current, timeout)
        return self._wait(future, timeout)

    def force_refresh(self, timeout: Optional[float] = None) -> Credential:
        """Refresh now regardless of expiry, joining any refresh in flight."""
        with self._lock:
            if self._invalid is not None:
                raise self._invalid_error()
            future, leader, generation, current = self._begin_refresh()

        if leader:
            self._run_refresh(future, generation, current, timeout)
        return self._wait(future, timeout)

    def _begin_refresh(self) -> Tuple[Future, bool, int, Credential]:
        # Caller holds self._lock.
        if self._refresh_future is not None:
            return self._refresh_future, False, self._generation, self._credential
        self._refresh_future = Future()
        return self._refresh_future, True, self._generation, self._credential

    def _run_refresh(
        self,
        future: Future,
        generation: int,
        current: Credential,
        timeout: Optional[float],
    ) -> None:
        try:
            credential = self._exchange(current, timeout)
        except Exception as e:
            error = _as_credential_invalid(e)
            with self._lock:
                stale = generation != self._generation
                self._record_failure(generation, error)
                self._refresh_future = None
                credential = self._credential
            if stale:
                # A credential was installed meanwhile; waiters get that one.
                future.set_result(credential)
            else:
                future.set_exception(error)
            return

        with self._lock:
            installed = self._record_success(generation, credential)
            self._refresh_future = None
            credential = self._credential

        if installed:
            self._notify(credential)
        future.set_result(credential)

    def _exchange(self, current: Credential, timeout: Optional[float]) -> Credential:
        url, data = self._refresh_request(current)
        request_timeout = self.oauth.refresh_timeout
        if timeout is not None:
            request_timeout = max(0.001, min(request_timeout, timeout))

        try:
            for attempt in Retrying(sleep=self._sleep, **self._retrying_kwargs(timeout)):
                with attempt:
                    response = self._http_client().post(
                        url,
                        data=data,
                        headers={"Accept": "application/json"},
                        timeout=request_timeout,
                    )
        except httpx.RequestError as e:
            raise self._wrap_transport_error(e) from e

        return self._credential_from_response(response, current)

    def _wait(self, future: Future, timeout: Optional[float]) -> Credential:
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            raise RequestTimeout(
                "Timed out waiting for access token refresh", timeout=timeout
            ) from None

    def _http_client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client()
        return self._http

    def close(self) -> None:
        """Close the token endpoint client if this manager created it."""
        if self._owns_http and self._http is not None:
            self._http.close()
            self._http = None


class AsyncTokenManager(_TokenManagerBase):
    """Token manager for asyncio callers.

    A refresh runs as a single task that every waiting coroutine awaits
    through ``asyncio.shield``, so a cancelled or timed-out caller never
    cancels the shared refresh.
    """

    def __init__(
        self,
        credential: Credential,
        oauth: Optional[OAuthConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        sleep: Optional[Callable[[float], Any]] = None,
    ) -> None:
        super().__init__(credential, oauth, clock)
        self._refresh_task: Optional[asyncio.Task] = None
        self._http = http_client
        self._owns_http = http_client is None
        self._sleep = sleep or asyncio.sleep

    @property
    def state(self) -> TokenState:
        return self._state_at(self._clock(), self._refresh_task is not None)

    @property
    def credential(self) -> Credential:
        return self._credential

    def install_credential(self, credential: Credential) -> None:
        """Replace the credential out of band, leaving the INVALID state."""
        self._install(credential)

    async def get_valid_credential(self, timeout: Optional[float] = None) -> Credential:
        """Return a live credential, refreshing it first when needed.

        Raises:
            CredentialInvalid: If the credential cannot be refreshed.
            RequestTimeout: If waiting for the refresh exceeds ``timeout``.
        """
        state = self.state
        if state == TokenState.INVALID:
            raise self._invalid_error()
        if state == TokenState.VALID:
            return self._credential
        return await self._wait(self._begin_refresh(timeout), timeout)

    async def force_refresh(self, timeout: Optional[float] = None) -> Credential:
        """Refresh now regardless of expiry, joining any refresh in flight."""
        if self._invalid is not None:
            raise self._invalid_error()
        return await self._wait(self._begin_refresh(timeout), timeout)

    def _begin_refresh(self, timeout: Optional[float]) -> asyncio.Task:
        if self._refresh_task is None:
            task = asyncio.ensure_future(
                self._run_refresh(self._generation, self._credential, timeout)
            )
            task.add_done_callback(self._refresh_done)
            self._refresh_task = task
        return self._refresh_task

    def _refresh_done(self, task: asyncio.Task) -> None:
        # A cancelled refresh never reaches _run_refresh's cleanup; free the
        # slot so the next caller starts a new exchange.
        if self._refresh_task is task:
            self._refresh_task = None
        if task.cancelled():
            logger.warning("Access token refresh was cancelled")
            return
        # Waiters may all have timed out; avoid "exception was never retrieved".
        task.exception()

    async def _run_refresh(
        self,
        generation: int,
        current: Credential,
        timeout: Optional[float],
    ) -> Credential:
        try:
            credential = await self._exchange(current, timeout)
        except Exception as e:
            error = _as_credential_invalid(e)
            self._record_failure(generation, error)
            self._refresh_task = None
            if generation != self._generation:
                return self._credential
            if error is e:
                raise
            raise error from e

        installed = self._record_success(generation, credential)
        self._refresh_task = None
        if installed:
            self._notify(self._credential)
        return self._credential

    async def _exchange(self, current: Credential, timeout: Optional[float]) -> Credential:
        url, data = self._refresh_request(current)
        request_timeout = self.oauth.refresh_timeout
        if timeout is not None:
            request_timeout = max(0.001, min(request_timeout, timeout))

        try:
            async for attempt in AsyncRetrying(sleep=self._sleep, **self._retrying_kwargs(timeout)):
                with attempt:
                    response = await self._http_client().post(
                        url,
                        data=data,
                        headers={"Accept": "application/json"},
                        timeout=request_timeout,
                    )
        except httpx.RequestError as e:
            raise self._wrap_transport_error(e) from e

        return self._credential_from_response(response, current)

    async def _wait(self, task: asyncio.Task, timeout: Optional[float]) -> Credential:
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(
                "Timed out waiting for access token refresh", timeout=timeout
            ) from None

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def aclose(self) -> None:
        """Close the token endpoint client if this manager created it."""
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None


def _as_credential_invalid(exc: Exception) -> CredentialInvalid:
    if isinstance(exc, CredentialInvalid):
        return exc
    return CredentialInvalid(f"Token refresh failed: {exc}", cause=exc)
