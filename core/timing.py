"""Injectable pauses and retry policy for the session controller."""

import asyncio
import time

from .config import (
    WORD_DISPLAY_DELAY_MS, FEEDBACK_DELAY_MS, AI_THINKING_DELAY_MS,
    RETRY_BACKOFF_MS
)


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class DelayPolicy:
    """UX pauses between session steps. Disabled policies never sleep."""

    def __init__(self, word_display_ms: int = WORD_DISPLAY_DELAY_MS,
                 feedback_ms: int = FEEDBACK_DELAY_MS,
                 thinking_ms: int = AI_THINKING_DELAY_MS,
                 enabled: bool = True):
        self.word_display_ms = word_display_ms
        self.feedback_ms = feedback_ms
        self.thinking_ms = thinking_ms
        self.enabled = enabled

    @classmethod
    def none(cls) -> 'DelayPolicy':
        return cls(0, 0, 0, enabled=False)

    async def sleep(self, ms: float) -> None:
        if self.enabled and ms > 0:
            await asyncio.sleep(ms / 1000)

    async def word_display(self) -> None:
        await self.sleep(self.word_display_ms)

    async def feedback(self) -> None:
        await self.sleep(self.feedback_ms)

    async def thinking(self) -> None:
        await self.sleep(self.thinking_ms)


class RetryPolicy:
    """Bounded retry with exponential backoff."""

    def __init__(self, attempts: int, backoff_ms: int = RETRY_BACKOFF_MS, multiplier: float = 2.0):
        if attempts < 1:
            raise ValueError("A retry policy needs at least one attempt")
        self.attempts = attempts
        self.backoff_ms = backoff_ms
        self.multiplier = multiplier

    def backoff_for(self, retry_number: int) -> float:
        """Backoff before the given retry (1 = first retry)."""
        return self.backoff_ms * (self.multiplier ** (retry_number - 1))


NO_RETRY = RetryPolicy(1)
