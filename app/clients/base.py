"""Provider-agnostic model adapter interface."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from app.clients.rate_limit import RateLimiter, estimate_tokens
from app.models.llm import ModelEvent, ModelReply
from app.models.messages import Message, ToolCallStatus
from app.models.tools import Tool


class ModelAdapter(ABC):
    """Wraps one LLM provider behind a single request/reply contract.

    Implementations translate provider errors into ``ProviderError`` or
    ``ProtocolError`` and never retry.
    """

    provider: str

    def __init__(self, rate_limiter: RateLimiter | None = None):
        self.rate_limiter = rate_limiter

    @abstractmethod
    async def send(self, history: Sequence[Message], tools: Sequence[Tool]) -> ModelReply:
        """Submit the history and tool catalog, returning the complete reply."""

    @abstractmethod
    def send_stream(self, history: Sequence[Message], tools: Sequence[Tool]) -> AsyncIterator[ModelEvent]:
        """Submit the history and tool catalog, yielding reply events as they arrive.

        The sequence is lazy, finite and ends with ``StreamDone``. Closing it closes
        the underlying response.
        """

    async def _throttle(self, history: Sequence[Message], tools: Sequence[Tool], system_prompt: str = "") -> None:
        if self.rate_limiter is None:
            return
        text = system_prompt + "".join(message.text for message in history)
        text += "".join(tool.name + tool.description + str(tool.input_schema) for tool in tools)
        await self.rate_limiter.acquire(estimate_tokens(text), self.provider)


def failed_call_ids(history: Sequence[Message]) -> set[str]:
    """Ids of tool calls whose status is ``failed``."""
    return {
        call.id
        for message in history
        for call in message.tool_calls or []
        if call.status == ToolCallStatus.FAILED
    }
