"""Tests for retry decisions."""

from datetime import datetime, timezone
from email.utils import format_datetime

import pytest

from asanawise.exceptions import ApiError, InvalidResponse, RateLimited
from asanawise.retry import (
    RetryConfig,
    RetryController,
    RetryDecision,
    RetryState,
    parse_retry_after,
)

NOW = 1_700_000_000.0


def http_date(offset: float) -> str:
    return format_datetime(
        datetime.fromtimestamp(NOW + offset, tz=timezone.utc), usegmt=True
    )


class TestParseRetryAfter:
    """Tests for parse_retry_after function."""

    def test_parses_integer_seconds(self):
        """Test numeric Retry-After is used exactly."""
        assert parse_retry_after("5") == 5.0

    def test_parses_float_seconds(self):
        """Test parsing float seconds."""
        assert parse_retry_after("1.5") == 1.5

    def test_numeric_is_floored_at_one_second(self):
        """Test zero seconds becomes the minimum delay."""
        assert parse_retry_after("0") == 1.0

    def test_parses_http_date(self):
        """Test HTTP date becomes a relative delay."""
        assert parse_retry_after(http_date(10), now=NOW) == pytest.approx(10.0)

    def test_past_http_date_is_floored(self):
        """Test a date in the past yields the minimum delay."""
        assert parse_retry_after(http_date(-30), now=NOW) == 1.0

    def test_returns_none_for_none(self):
        """Test returns None for None input."""
        assert parse_retry_after(None) is None

    def test_returns_none_for_invalid(self):
        """Test returns None for invalid input."""
        assert parse_retry_after("invalid") is None
        assert parse_retry_after("-3") is None
        assert parse_retry_after("inf") is None


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_config(self):
        """Test default configuration."""
        config = RetryConfig()

        assert config.max_retries == 3
        assert config.initial_backoff == 1

    def test_fallback_is_fixed(self):
        """Test fallback delay is initial_backoff * 2 ** max_retries."""
        assert RetryConfig(max_retries=3, initial_backoff=1).fallback_delay == 8
        assert RetryConfig(max_retries=2, initial_backoff=0.5).fallback_delay == 2


class TestRetryController:
    """Tests for RetryController."""

    def test_new_state_starts_at_zero(self):
        """Test each call gets fresh state."""
        controller = RetryController()
        state = controller.new_state()

        assert state.attempt == 0
        assert state.max_retries == 3
        assert state.total_attempts == 1
        assert controller.new_state() is not state

    def test_retries_rate_limited_with_header_delay(self):
        """Test 429 with Retry-After is retried after that delay."""
        controller = RetryController()
        error = RateLimited(retry_after_header="5")

        decision = controller.should_retry(error, controller.new_state())

        assert isinstance(decision, RetryDecision)
        assert decision.should_retry is True
        assert decision.delay == 5.0

    def test_uses_fallback_without_header(self):
        """Test fallback delay when no Retry-After is given."""
        controller = RetryController(RetryConfig(max_retries=3, initial_backoff=1))

        decision = controller.should_retry(RateLimited(), controller.new_state())

        assert decision.delay == 8.0

    def test_fallback_does_not_grow_per_attempt(self):
        """Test the fallback is the same on every attempt."""
        controller = RetryController()
        state = controller.new_state()
        delays = []
        for _ in range(3):
            decision = controller.should_retry(RateLimited(), state)
            delays.append(decision.delay)
            state.advance(decision.delay)

        assert delays == [8.0, 8.0, 8.0]
        assert state.delays == [8.0, 8.0, 8.0]
        assert state.last_delay == 8.0

    def test_uses_http_date(self):
        """Test HTTP-date Retry-After is converted using the clock."""
        controller = RetryController()
        error = RateLimited(retry_after_header=http_date(10))

        decision = controller.should_retry(error, controller.new_state(), now=NOW)

        assert decision.delay == pytest.approx(10.0)

    def test_no_retry_for_other_errors(self):
        """Test only rate limiting is retried."""
        controller = RetryController()
        state = controller.new_state()

        for error in (ApiError("Not Found", status_code=404), InvalidResponse()):
            decision = controller.should_retry(error, state)
            assert decision.should_retry is False
            assert decision.error is error

    def test_exhausted_surfaces_rate_limited(self):
        """Test the last attempt yields a terminal RateLimited."""
        controller = RetryController(RetryConfig(max_retries=2))
        state = RetryState(max_retries=2, initial_backoff=1, attempt=2)
        error = RateLimited(
            retry_after_header="7",
            details={"errors": [{"message": "slow down"}]},
        )

        decision = controller.should_retry(error, state)

        assert decision.should_retry is False
        assert isinstance(decision.error, RateLimited)
        assert decision.error.retry_after == 7.0
        assert decision.error.attempts == 3
        assert decision.error.details == {"errors": [{"message": "slow down"}]}
        assert "retry after 7 seconds" in str(decision.error)

    def test_zero_retries_never_retries(self):
        """Test max_retries=0 surfaces the first 429."""
        controller = RetryController(RetryConfig(max_retries=0))

        decision = controller.should_retry(RateLimited(), controller.new_state())

        assert decision.should_retry is False
        assert decision.error.retry_after == 1.0
