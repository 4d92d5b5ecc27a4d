"""OpenAI Chat Completions adapter."""

import os
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any

from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI

from app.clients.base import ModelAdapter
from app.clients.rate_limit import RateLimiter
from app.errors import ProtocolError, ProviderError
from app.models.llm import (
    ContentDelta,
    LLMUsage,
    ModelEvent,
    ModelReply,
    StreamDone,
    TextReply,
    ToolCallArgumentDelta,
    ToolCallReply,
    ToolCallStarted,
)
from app.models.messages import ContentBlock, FunctionCall, Message, TextBlock, ToolCall, ToolInvocationBlock
from app.models.tools import Tool
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class OpenAIConfig:
    """Configuration for OpenAI API client."""

    model: str = "gpt-4o"
    max_tokens: int = 1024
    temperature: float = 0.1
    system_prompt: str = ""


def _provider_error(e: APIError) -> ProviderError:
    status_code = e.status_code if isinstance(e, APIStatusError) else None
    retryable = isinstance(e, APIConnectionError) or status_code == 429 or (status_code or 0) >= 500
    return ProviderError(f"OpenAI API error: {e.message}", status_code=status_code, retryable=retryable)


class OpenAIAdapter(ModelAdapter):
    """Adapter for OpenAI chat models.

    OpenAI signals a tool request with a ``tool_calls`` array on the assistant message
    (``finish_reason == "tool_calls"``); results go back as ``role: "tool"`` messages.
    """

    provider = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        config: OpenAIConfig | None = None,
        client: AsyncOpenAI | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        """Initialize OpenAI adapter.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            config: Model configuration
            client: Pre-built SDK client, mainly for tests
            rate_limiter: Optional client-side throttle
        """
        super().__init__(rate_limiter)
        self.config = config or OpenAIConfig()

        if client is None:
            openai_api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not openai_api_key:
                raise ValueError("OPENAI_API_KEY environment variable is required")
            client = AsyncOpenAI(api_key=openai_api_key)
        self.client = client

    def _tools_to_openai(self, tools: Sequence[Tool]) -> list[dict[str, Any]]:
        """Convert tools to OpenAI's format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in tools
        ]

    def _messages_to_openai(self, history: Sequence[Message]) -> list[dict[str, Any]]:
        """Convert messages to OpenAI's format."""
        openai_messages: list[dict[str, Any]] = []

        if self.config.system_prompt:
            openai_messages.append({"role": "system", "content": self.config.system_prompt})

        for message in history:
            if message.role == "tool":
                openai_messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": message.tool_call_id,
                        "content": message.text,
                    }
                )
            elif message.role == "assistant" and message.tool_calls:
                openai_messages.append(
                    {
                        "role": "assistant",
                        "content": message.text or None,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {"name": call.name, "arguments": call.function.arguments or "{}"},
                            }
                            for call in message.tool_calls
                        ],
                    }
                )
            else:
                openai_messages.append({"role": message.role, "content": message.text})

        return openai_messages

    def _request_params(self, history: Sequence[Message], tools: Sequence[Tool]) -> dict[str, Any]:
        request_params: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": self._messages_to_openai(history),
        }
        if tools:
            request_params["tools"] = self._tools_to_openai(tools)
            request_params["tool_choice"] = "auto"
        return request_params

    def _convert_response(self, response: Any) -> ModelReply:
        if not response.choices:
            raise ProtocolError("OpenAI reply contained no choices")

        choice = response.choices[0]
        reply = choice.message
        usage = None
        if response.usage:
            usage = LLMUsage(input_tokens=response.usage.prompt_tokens, output_tokens=response.usage.completion_tokens)

        logger.debug(f"Response received - Finish reason: {choice.finish_reason}")

        if reply.tool_calls:
            content: list[ContentBlock] = []
            if reply.content:
                content.append(TextBlock(text=reply.content))
            tool_calls: list[ToolCall] = []
            for call in reply.tool_calls:
                content.append(ToolInvocationBlock(id=call.id, name=call.function.name))
                tool_calls.append(
                    ToolCall(id=call.id, function=FunctionCall(name=call.function.name, arguments=call.function.arguments))
                )
            return ToolCallReply(tool_calls=tool_calls, content=content, usage=usage)

        if choice.finish_reason == "tool_calls":
            raise ProtocolError("OpenAI reply finished for tool calls without any tool_calls")
        return TextReply(content=reply.content or "", usage=usage)

    async def send(self, history: Sequence[Message], tools: Sequence[Tool]) -> ModelReply:
        await self._throttle(history, tools, self.config.system_prompt)
        request_params = self._request_params(history, tools)

        logger.debug(f"Making OpenAI API call with model: {request_params['model']}, {len(history)} messages")
        try:
            response = await self.client.chat.completions.create(**request_params)
        except APIError as e:
            raise _provider_error(e) from e

        return self._convert_response(response)

    async def send_stream(self, history: Sequence[Message], tools: Sequence[Tool]) -> AsyncIterator[ModelEvent]:
        await self._throttle(history, tools, self.config.system_prompt)
        request_params = self._request_params(history, tools)

        logger.debug(f"Streaming OpenAI API call with model: {request_params['model']}, {len(history)} messages")
        try:
            stream = await self.client.chat.completions.create(
                **request_params, stream=True, stream_options={"include_usage": True}
            )
        except APIError as e:
            raise _provider_error(e) from e

        # Tool calls arrive keyed by index; only the first fragment carries the id
        call_ids: dict[int, str] = {}
        usage: LLMUsage | None = None
        finish_reason: str | None = None

        try:
            async for chunk in stream:
                if chunk.usage:
                    usage = LLMUsage(
                        input_tokens=chunk.usage.prompt_tokens,
                        output_tokens=chunk.usage.completion_tokens,
                    )

                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta

                if delta.content:
                    yield ContentDelta(text=delta.content)

                for call_delta in delta.tool_calls or []:
                    index = call_delta.index
                    if index not in call_ids:
                        if not call_delta.id:
                            raise ProtocolError(f"Tool call fragment {index} arrived before its id")
                        call_ids[index] = call_delta.id
                        name = call_delta.function.name if call_delta.function else None
                        yield ToolCallStarted(id=call_delta.id, name=name or "")
                    if call_delta.function and call_delta.function.arguments:
                        yield ToolCallArgumentDelta(id=call_ids[index], delta=call_delta.function.arguments)

                if choice.finish_reason:
                    finish_reason = choice.finish_reason

        except APIError as e:
            raise _provider_error(e) from e
        finally:
            await stream.close()

        if finish_reason is None:
            raise ProtocolError("OpenAI stream ended without a finish reason")
        yield StreamDone(stop_reason=finish_reason, usage=usage)
