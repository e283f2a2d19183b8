"""Pytest configuration and fixtures for asanawise tests."""

import json
import time
from typing import Any, Dict, Optional

import pytest
import httpx

from asanawise.models import Credential, OAuthConfig


def make_response(
    status_code: int = 200,
    body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    text: Optional[str] = None,
) -> httpx.Response:
    """Build a real httpx response with a JSON or raw text body."""
    if text is None:
        text = json.dumps(body) if body is not None else ""
    return httpx.Response(status_code, headers=headers or {}, text=text)


def token_payload(access_token: str = "new-token", expires_in: int = 3600, **extra: Any) -> Dict[str, Any]:
    payload = {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": expires_in,
        "data": {"id": 1, "gid": "1", "name": "Greg Sanchez", "email": "gsanchez@example.com"},
    }
    payload.update(extra)
    return payload


@pytest.fixture
def mock_response_200():
    """Create a 200 OK response wrapping a task."""
    return make_response(200, {"data": {"gid": "1", "name": "Buy catnip"}})


@pytest.fixture
def mock_response_429():
    """Create a 429 rate limit response with Retry-After."""
    return make_response(
        429,
        {"errors": [{"message": "You have made too many requests recently."}]},
        headers={"Retry-After": "5"},
    )


@pytest.fixture
def mock_response_429_no_hint():
    """Create a 429 rate limit response without Retry-After."""
    return make_response(429, {"errors": [{"message": "Too many requests"}]})


@pytest.fixture
def oauth_config():
    """OAuth application settings for refresh tests."""
    return OAuthConfig(
        client_id="client-123",
        client_secret="secret-456",
        token_url="https://app.asana.com/-/oauth_token",
        refresh_margin=60.0,
    )


@pytest.fixture
def expiring_credential():
    """Credential inside the refresh margin."""
    return Credential(
        access_token="old-token",
        refresh_token="refresh-abc",
        expires_at=time.time() + 10,
    )


@pytest.fixture
def fresh_credential():
    """Credential valid for an hour."""
    return Credential(
        access_token="live-token",
        refresh_token="refresh-abc",
        expires_at=time.time() + 3600,
    )
