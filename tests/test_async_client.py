"""Tests for the asynchronous Asana client."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from asanawise import AsyncAsanaClient
from asanawise.auth import AsyncTokenManager
from asanawise.exceptions import ApiError, InvalidResponse, RateLimited, TransportError

from conftest import make_response, token_payload


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestAsyncAsanaClient:
    """Tests for AsyncAsanaClient."""

    @pytest.mark.asyncio
    async def test_get_returns_data(self):
        """Test DATA shape and bearer header."""
        requests = []

        def handler(request):
            requests.append(request)
            return make_response(200, {"data": {"gid": "1", "name": "Buy catnip"}})

        async with AsyncAsanaClient(access_token="pat-123", http_client=mock_client(handler)) as client:
            result = await client.get("tasks/1", params=[("opt_fields", "name")])

        assert result == {"gid": "1", "name": "Buy catnip"}
        assert requests[0].headers["Authorization"] == "Bearer pat-123"
        assert str(requests[0].url) == "https://app.asana.com/api/1.0/tasks/1?opt_fields=name"

    @pytest.mark.asyncio
    async def test_retries_rate_limited(self, mock_response_429, mock_response_200):
        """Test 429 is retried with an awaited sleep."""
        responses = [mock_response_429, mock_response_200]
        sleep = AsyncMock()

        async with AsyncAsanaClient(
            access_token="pat-123",
            http_client=mock_client(lambda request: responses.pop(0)),
            sleep=sleep,
        ) as client:
            result = await client.get("tasks/1")
            delays = client.get_retry_delays()

        assert result == {"gid": "1", "name": "Buy catnip"}
        sleep.assert_awaited_once_with(5.0)
        assert delays == [5.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, mock_response_429):
        """Test RateLimited after all attempts."""
        calls = []

        def handler(request):
            calls.append(request)
            return mock_response_429

        async with AsyncAsanaClient(
            access_token="pat-123",
            max_retries=2,
            http_client=mock_client(handler),
            sleep=AsyncMock(),
        ) as client:
            with pytest.raises(RateLimited) as exc_info:
                await client.get("tasks/1")

        assert len(calls) == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.retry_after == 5.0

    @pytest.mark.asyncio
    async def test_api_error_and_invalid_body(self):
        """Test terminal errors are not retried."""
        responses = [
            make_response(403, {"errors": [{"message": "Forbidden"}]}),
            make_response(200, text="not json"),
        ]

        async with AsyncAsanaClient(
            access_token="pat-123",
            http_client=mock_client(lambda request: responses.pop(0)),
        ) as client:
            with pytest.raises(ApiError):
                await client.get("tasks/1")
            with pytest.raises(InvalidResponse):
                await client.get("tasks/1")

            stats = client.get_stats()

        assert stats.total_requests == 2
        assert stats.failed_requests == 2

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Test network failures become TransportError."""
        def handler(request):
            raise httpx.ConnectError("Connection refused")

        async with AsyncAsanaClient(access_token="pat-123", http_client=mock_client(handler)) as client:
            with pytest.raises(TransportError):
                await client.get("tasks/1")

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_refresh(self, expiring_credential, oauth_config):
        """Test many in-flight requests trigger a single token refresh."""
        refreshes = []
        tokens = []

        async def handler(request):
            if request.url.path == "/-/oauth_token":
                refreshes.append(request)
                await asyncio.sleep(0.05)
                return make_response(200, token_payload("fresh-token"))
            tokens.append(request.headers["Authorization"])
            return make_response(200, {"data": {"gid": request.url.path.rsplit("/", 1)[-1]}})

        manager = AsyncTokenManager(
            expiring_credential,
            oauth=oauth_config,
            http_client=mock_client(handler),
        )

        async with AsyncAsanaClient(token_manager=manager, http_client=mock_client(handler)) as client:
            results = await asyncio.gather(*(client.get(f"tasks/{i}") for i in range(5)))

        assert len(refreshes) == 1
        assert tokens == ["Bearer fresh-token"] * 5
        assert [r["gid"] for r in results] == ["0", "1", "2", "3", "4"]
