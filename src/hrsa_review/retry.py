from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from .errors import LlmError, MalformedResponse, RateLimited, RetryExhausted

T = TypeVar("T")

# Errors worth another attempt. Anything else (bad config, programming
# errors) propagates on the first failure.
TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (LlmError, MalformedResponse, OSError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    rate_limit_base_sec: float = 10.0
    error_delay_sec: float = 5.0

    def delay_for(self, error: BaseException, attempt: int) -> float:
        """Wait after failed attempt number `attempt` (1-based)."""
        if isinstance(error, RateLimited):
            return self.rate_limit_base_sec * attempt
        return self.error_delay_sec


def with_retry(
    action: Callable[[], T],
    max_attempts: Optional[int] = None,
    policy: Optional[RetryPolicy] = None,
    *,
    label: str = "request",
    sleep: Callable[[float], None] = time.sleep,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
) -> T:
    """
    Run `action` until it succeeds, sequentially, at most `max_attempts` times.

    HTTP 429 waits rate_limit_base * attempt; other transient errors wait a
    fixed error_delay. Raises RetryExhausted carrying the last error.
    """
    policy = policy or RetryPolicy()
    attempts = int(max_attempts if max_attempts is not None else policy.max_attempts)
    if attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return action()
        except retry_on as e:
            last = e
            if attempt >= attempts:
                break
            delay = policy.delay_for(e, attempt)
            if isinstance(e, RateLimited):
                logging.warning("Rate limit hit on %s. Waiting %.0fs (retry %d/%d)", label, delay, attempt, attempts - 1)
            else:
                logging.warning("Error on %s: %s. Retrying in %.0fs (retry %d/%d)", label, e, delay, attempt, attempts - 1)
            sleep(delay)

    assert last is not None
    logging.error("Failed %s after %d attempts: %s", label, attempts, last)
    raise RetryExhausted(attempts, last)
