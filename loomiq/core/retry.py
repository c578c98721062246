"""Exponential backoff policy for single-agent task execution."""

import logging
from asyncio import sleep

from ..config import RetrySettings


logger = logging.getLogger(__name__)


class RetryPolicy:
    """Attempt budget and delay schedule for retried agent calls.

    Attempts are numbered from 0. No delay precedes attempt 0; the delay
    before attempt k (k >= 1) is ``base * factor ** (k - 1)`` capped at
    ``max_delay_ms``, giving 1000 ms, 2000 ms, 4000 ms ... with the defaults.
    """

    def __init__(self, settings: RetrySettings | None = None):
        """Initialize from retry settings (defaults when omitted)."""
        settings = settings or RetrySettings()
        self.max_attempts = settings.max_attempts
        self.base_delay_ms = settings.base_delay_ms
        self.max_delay_ms = settings.max_delay_ms
        self.backoff_factor = settings.backoff_factor

    def delay_before(self, attempt: int) -> int:
        """Delay in milliseconds to wait before the given attempt."""
        if attempt <= 0:
            return 0
        delay = self.base_delay_ms * self.backoff_factor ** (attempt - 1)
        return int(min(delay, self.max_delay_ms))

    def delays(self) -> list[int]:
        """All delays inserted over a full attempt budget."""
        return [self.delay_before(k) for k in range(1, self.max_attempts)]

    def has_attempts_left(self, attempt: int) -> bool:
        """Whether another attempt may follow the given one."""
        return attempt < self.max_attempts - 1

    async def wait_before(self, attempt: int) -> int:
        """Sleep for the delay preceding the given attempt and return it."""
        delay = self.delay_before(attempt)
        if delay > 0:
            logger.debug(f"Backing off {delay}ms before attempt {attempt + 1}")
            await sleep(delay / 1000)
        return delay
