"""Retry decisions for rate-limited requests."""

import re
import time
from dataclasses import dataclass, field
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional

from asanawise.exceptions import AsanaWiseError, RateLimited
from asanawise.models import DEFAULT_INITIAL_BACKOFF, DEFAULT_MAX_RETRIES

_SECONDS_RE = re.compile(r"^\s*\d+(\.\d+)?\s*$")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF
    min_delay: float = 1.0

    @property
    def fallback_delay(self) -> float:
        """Delay used when the server gives no usable Retry-After.

        Fixed across attempts: ``initial_backoff * 2 ** max_retries``.
        """
        return self.initial_backoff * (2 ** self.max_retries)


@dataclass
class RetryState:
    """Retry bookkeeping for one logical call."""

    max_retries: int
    initial_backoff: float
    attempt: int = 0
    last_delay: Optional[float] = None
    delays: List[float] = field(default_factory=list)

    @property
    def total_attempts(self) -> int:
        """Transport attempts made so far, counting the one in progress."""
        return self.attempt + 1

    def advance(self, delay: float) -> None:
        self.attempt += 1
        self.last_delay = delay
        self.delays.append(delay)


@dataclass
class RetryDecision:
    """Decision on whether to retry a request.

    When ``should_retry`` is False, ``error`` is what the caller receives.
    """
    should_retry: bool
    delay: float = 0.0
    reason: str = ""
    error: Optional[AsanaWiseError] = None


def parse_retry_after(
    header_value: Optional[str],
    now: Optional[float] = None,
    min_delay: float = 1.0,
) -> Optional[float]:
    """Parse Retry-After header value.

    Args:
        header_value: The header value (seconds or HTTP date).
        now: Current UNIX time used for HTTP dates.
        min_delay: Lower bound for the result.

    Returns:
        Delay in seconds, or None if absent or not parseable.
    """
    if header_value is None:
        return None

    if _SECONDS_RE.match(header_value):
        return max(min_delay, float(header_value))

    try:
        retry_date = parsedate_to_datetime(header_value)
    except (ValueError, TypeError, IndexError):
        return None
    if retry_date is None:
        return None
    if retry_date.tzinfo is None:
        retry_date = retry_date.replace(tzinfo=timezone.utc)

    now = time.time() if now is None else now
    return max(min_delay, retry_date.timestamp() - now)


class RetryController:
    """Decides whether a classified failure is retried and for how long to wait.

    Only ``RateLimited`` failures are retried, at most ``max_retries`` times.
    The wait honours the server's ``Retry-After`` hint and otherwise uses a
    fixed fallback of ``initial_backoff * 2 ** max_retries`` seconds.
    """

    def __init__(self, config: Optional[RetryConfig] = None) -> None:
        self.config = config or RetryConfig()

    def new_state(self) -> RetryState:
        """Fresh per-call state."""
        return RetryState(
            max_retries=self.config.max_retries,
            initial_backoff=self.config.initial_backoff,
        )

    def compute_delay(self, retry_after: Optional[str], now: Optional[float] = None) -> float:
        """Seconds to wait before the next attempt."""
        parsed = parse_retry_after(retry_after, now=now, min_delay=self.config.min_delay)
        if parsed is not None:
            return parsed
        return self.config.fallback_delay

    def should_retry(
        self,
        error: AsanaWiseError,
        state: RetryState,
        now: Optional[float] = None,
    ) -> RetryDecision:
        """Decide what to do with a failed attempt.

        Args:
            error: Classified failure of the attempt.
            state: Retry state of the logical call.
            now: Current UNIX time, for HTTP-date Retry-After values.

        Returns:
            A retry decision; when retrying it carries the delay, otherwise
            the error to surface.
        """
        if not isinstance(error, RateLimited):
            return RetryDecision(
                should_retry=False,
                reason=f"{error.kind.value} is not retryable",
                error=error,
            )

        delay = self.compute_delay(error.retry_after_header, now=now)

        if state.attempt < state.max_retries:
            return RetryDecision(
                should_retry=True,
                delay=delay,
                reason=f"Rate limit (429), Retry-After: {error.retry_after_header}",
            )

        return RetryDecision(
            should_retry=False,
            delay=delay,
            reason="retries exhausted",
            error=self.exhausted(error, state, delay),
        )

    def exhausted(self, error: RateLimited, state: RetryState, delay: float) -> RateLimited:
        """Terminal rate-limit error carrying the advised or fallback delay."""
        return RateLimited(
            retry_after=delay,
            retry_after_header=error.retry_after_header,
            attempts=state.total_attempts,
            details=error.details,
            cause=error,
            method=error.method,
            url=error.url,
        )
