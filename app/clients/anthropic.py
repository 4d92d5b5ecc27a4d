"""Anthropic Messages API adapter."""

import json
import os
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any

from anthropic import APIConnectionError, APIError, AsyncAnthropic

from app.clients.base import ModelAdapter, failed_call_ids
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
from app.models.messages import (
    ContentBlock,
    FunctionCall,
    Message,
    TextBlock,
    ToolCall,
    ToolInvocationBlock,
    ToolResultBlock,
)
from app.models.tools import Tool
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = 1024
    temperature: float = 0.1
    system_prompt: str = ""


def decode_arguments(arguments: str) -> dict[str, Any]:
    """Decode stored tool-call arguments for replay to a provider that wants an object."""
    if not arguments:
        return {}
    try:
        decoded = json.loads(arguments)
    except json.JSONDecodeError:
        logger.warning(f"Replaying undecodable tool arguments as an empty object: {arguments[:100]}")
        return {}
    return decoded if isinstance(decoded, dict) else {}


def _provider_error(e: APIError) -> ProviderError:
    status_code = getattr(e, "status_code", None)
    retryable = isinstance(e, APIConnectionError) or status_code == 429 or (status_code or 0) >= 500
    return ProviderError(f"Anthropic API error: {e.message}", status_code=status_code, retryable=retryable)


class AnthropicAdapter(ModelAdapter):
    """Adapter for Claude models.

    Claude signals a tool request with ``stop_reason == "tool_use"`` and ``tool_use``
    content blocks; results go back as ``tool_result`` blocks inside a user turn.
    """

    provider = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        config: AnthropicConfig | None = None,
        client: AsyncAnthropic | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        """Initialize Anthropic adapter.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Model configuration
            client: Pre-built SDK client, mainly for tests
            rate_limiter: Optional client-side throttle
        """
        super().__init__(rate_limiter)
        self.config = config or AnthropicConfig()

        if client is None:
            anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
            if not anthropic_api_key:
                raise ValueError("ANTHROPIC_API_KEY environment variable is required")
            client = AsyncAnthropic(api_key=anthropic_api_key)
        self.client = client

    def _tools_to_anthropic(self, tools: Sequence[Tool]) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in tools
        ]

    def _assistant_blocks(self, message: Message, calls: dict[str, ToolCall]) -> list[dict[str, Any]]:
        def tool_use(call: ToolCall) -> dict[str, Any]:
            return {
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": decode_arguments(call.function.arguments),
            }

        blocks: list[dict[str, Any]] = []
        emitted: set[str] = set()

        if isinstance(message.content, str):
            if message.content:
                blocks.append({"type": "text", "text": message.content})
        else:
            for block in message.content:
                if isinstance(block, TextBlock) and block.text:
                    blocks.append({"type": "text", "text": block.text})
                elif isinstance(block, ToolInvocationBlock) and block.id in calls:
                    blocks.append(tool_use(calls[block.id]))
                    emitted.add(block.id)

        for call in message.tool_calls or []:
            if call.id not in emitted:
                blocks.append(tool_use(call))
        return blocks

    def _messages_to_anthropic(self, history: Sequence[Message]) -> list[dict[str, Any]]:
        """Convert messages to Anthropic's format."""
        failed = failed_call_ids(history)
        calls = {call.id: call for message in history for call in message.tool_calls or []}
        anthropic_messages: list[dict[str, Any]] = []

        for message in history:
            if message.role == "tool":
                result: dict[str, Any] = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.text,
                }
                if message.tool_call_id in failed:
                    result["is_error"] = True

                # Consecutive results belong to one user turn
                previous = anthropic_messages[-1] if anthropic_messages else None
                if (
                    previous
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(block["type"] == "tool_result" for block in previous["content"])
                ):
                    previous["content"].append(result)
                else:
                    anthropic_messages.append({"role": "user", "content": [result]})

            elif message.role == "assistant" and message.tool_calls:
                anthropic_messages.append({"role": "assistant", "content": self._assistant_blocks(message, calls)})

            elif message.role == "assistant" and not message.text.strip():
                # The Messages API rejects assistant turns without content
                continue

            elif isinstance(message.content, str):
                anthropic_messages.append({"role": message.role, "content": message.content})

            else:
                blocks: list[dict[str, Any]] = []
                for block in message.content:
                    if isinstance(block, TextBlock):
                        blocks.append({"type": "text", "text": block.text})
                    elif isinstance(block, ToolResultBlock):
                        blocks.append(
                            {
                                "type": "tool_result",
                                "tool_use_id": block.tool_call_id,
                                "content": block.content,
                                "is_error": block.is_error,
                            }
                        )
                anthropic_messages.append({"role": message.role, "content": blocks})

        return anthropic_messages

    def _request_params(self, history: Sequence[Message], tools: Sequence[Tool]) -> dict[str, Any]:
        request_params: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": self._messages_to_anthropic(history),
        }
        if self.config.system_prompt:
            request_params["system"] = self.config.system_prompt
        if tools:
            request_params["tools"] = self._tools_to_anthropic(tools)
        return request_params

    def _convert_response(self, response: Any) -> ModelReply:
        """Convert an Anthropic message into a provider-agnostic reply."""
        content: list[ContentBlock] = []
        tool_calls: list[ToolCall] = []

        for block in response.content:
            if block.type == "text":
                content.append(TextBlock(text=block.text))
            elif block.type == "tool_use":
                content.append(ToolInvocationBlock(id=block.id, name=block.name))
                tool_calls.append(
                    ToolCall(id=block.id, function=FunctionCall(name=block.name, arguments=json.dumps(block.input)))
                )
            else:
                logger.warning(f"Unknown content block type: {block.type}")

        usage = None
        if response.usage:
            usage = LLMUsage(input_tokens=response.usage.input_tokens, output_tokens=response.usage.output_tokens)

        logger.debug(f"Response received - Stop reason: {response.stop_reason}, Content blocks: {len(content)}")

        if response.stop_reason == "tool_use" and not tool_calls:
            raise ProtocolError("Anthropic reply stopped for tool use without any tool_use block")
        if tool_calls:
            return ToolCallReply(tool_calls=tool_calls, content=content, usage=usage)
        return TextReply(content="".join(block.text for block in content if isinstance(block, TextBlock)), usage=usage)

    async def send(self, history: Sequence[Message], tools: Sequence[Tool]) -> ModelReply:
        await self._throttle(history, tools, self.config.system_prompt)
        request_params = self._request_params(history, tools)

        logger.debug(f"Making Anthropic API call with model: {request_params['model']}, {len(history)} messages")
        try:
            response = await self.client.messages.create(**request_params)
        except APIError as e:
            raise _provider_error(e) from e

        return self._convert_response(response)

    async def send_stream(self, history: Sequence[Message], tools: Sequence[Tool]) -> AsyncIterator[ModelEvent]:
        await self._throttle(history, tools, self.config.system_prompt)
        request_params = self._request_params(history, tools)

        logger.debug(f"Streaming Anthropic API call with model: {request_params['model']}, {len(history)} messages")
        try:
            stream = await self.client.messages.create(**request_params, stream=True)
        except APIError as e:
            raise _provider_error(e) from e

        tool_block_ids: dict[int, str] = {}
        usage = LLMUsage()
        stop_reason: str | None = None
        finished = False

        try:
            async for event in stream:
                if event.type == "message_start":
                    if event.message.usage:
                        usage.input_tokens = event.message.usage.input_tokens

                elif event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        tool_block_ids[event.index] = block.id
                        yield ToolCallStarted(id=block.id, name=block.name)
                    elif block.type == "text" and block.text:
                        yield ContentDelta(text=block.text)

                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        yield ContentDelta(text=delta.text)
                    elif delta.type == "input_json_delta":
                        call_id = tool_block_ids.get(event.index)
                        if call_id is None:
                            raise ProtocolError(f"Argument delta for content block {event.index} before its start")
                        yield ToolCallArgumentDelta(id=call_id, delta=delta.partial_json)

                elif event.type == "message_delta":
                    stop_reason = event.delta.stop_reason
                    if event.usage:
                        usage.output_tokens = event.usage.output_tokens

                elif event.type == "message_stop":
                    finished = True

        except APIError as e:
            raise _provider_error(e) from e
        finally:
            await stream.close()

        if not finished:
            raise ProtocolError("Anthropic stream ended before message_stop")
        yield StreamDone(stop_reason=stop_reason, usage=usage)
