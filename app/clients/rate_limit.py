"""Client-side request and token throttling shared by the model adapters."""

import asyncio
import time
from functools import cache

import tiktoken
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from app.utils.logging import get_logger

logger = get_logger(__name__)


@cache
def _get_tokenizer() -> tiktoken.Encoding | None:
    try:
        # Close approximation for both providers
        return tiktoken.get_encoding("cl100k_base")
    except Exception:
        logger.warning("tiktoken encoding unavailable, estimating tokens from character count")
        return None


def estimate_tokens(text: str) -> int:
    """Estimate the token count of ``text``."""
    tokenizer = _get_tokenizer()
    try:
        return len(tokenizer.encode(text)) if tokenizer else len(text) // 4
    except Exception:
        # Fallback: roughly 4 characters per token
        return len(text) // 4


class RateLimiter:
    """Moving-window limiter for requests and tokens per minute.

    A request over budget is delayed until the window resets. Nothing is retried here.
    """

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def acquire(self, estimated_tokens: int, identifier: str) -> None:
        """Wait until a request of ``estimated_tokens`` fits within both limits."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_reset(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=max(estimated_tokens, 1)):
            await self._wait_for_reset(self.token_limit, token_identifier, "Token")

    async def _wait_for_reset(self, limit, identifier: str, kind: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if not window_stats:
            return
        wait_time = max(0.0, window_stats.reset_time - time.time())
        if wait_time > 0:
            logger.warning(f"{kind} rate limit exceeded for {identifier}, waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time)
