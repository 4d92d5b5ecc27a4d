"""Test doubles shared across the suite: a scripted model adapter and fake backends."""

import copy
from collections.abc import AsyncIterator, Sequence
from typing import Any

from app.clients.base import ModelAdapter
from app.errors import BackendError
from app.models.llm import (
    ContentDelta,
    ModelEvent,
    ModelReply,
    StreamDone,
    TextReply,
    ToolCallArgumentDelta,
    ToolCallReply,
    ToolCallStarted,
)
from app.models.messages import FunctionCall, Message, TextBlock, ToolCall, ToolInvocationBlock
from app.models.tools import ClientConfig, Tool, ToolCreate, ToolType


def tool_call(call_id: str, name: str, arguments: str) -> ToolCall:
    return ToolCall(id=call_id, function=FunctionCall(name=name, arguments=arguments))


def tool_reply(*calls: ToolCall, text: str = "") -> ToolCallReply:
    content: list[Any] = [TextBlock(text=text)] if text else []
    content += [ToolInvocationBlock(id=call.id, name=call.name) for call in calls]
    return ToolCallReply(tool_calls=list(calls), content=content)


def reply_events(reply: ModelReply) -> list[ModelEvent]:
    """Render a reply as the event sequence a provider would stream."""
    if isinstance(reply, TextReply):
        half = len(reply.content) // 2
        parts = [reply.content[:half], reply.content[half:]]
        return [*(ContentDelta(text=p) for p in parts if p), StreamDone(stop_reason="end_turn")]

    events: list[ModelEvent] = []
    calls = {call.id: call for call in reply.tool_calls}
    for block in reply.content:
        if isinstance(block, TextBlock):
            events.append(ContentDelta(text=block.text))
        elif isinstance(block, ToolInvocationBlock):
            arguments = calls[block.id].function.arguments
            half = len(arguments) // 2
            events.append(ToolCallStarted(id=block.id, name=block.name))
            events += [ToolCallArgumentDelta(id=block.id, delta=p) for p in (arguments[:half], arguments[half:]) if p]
    events.append(StreamDone(stop_reason="tool_use"))
    return events


class ScriptedAdapter(ModelAdapter):
    """Model adapter that replays a fixed script of replies, errors or raw event lists."""

    provider = "scripted"

    def __init__(self, script: Sequence[ModelReply | Exception | list[ModelEvent]]):
        super().__init__()
        self.script = list(copy.deepcopy(script))
        self.histories: list[list[Message]] = []

    def _next(self, history: Sequence[Message]):
        self.histories.append([message.model_copy(deep=True) for message in history])
        if not self.script:
            raise AssertionError("Scripted adapter ran out of replies")
        return self.script.pop(0)

    async def send(self, history: Sequence[Message], tools: Sequence[Tool]) -> ModelReply:
        item = self._next(history)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, list):
            raise AssertionError("Raw event scripts are only valid for streaming")
        return item

    async def send_stream(self, history: Sequence[Message], tools: Sequence[Tool]) -> AsyncIterator[ModelEvent]:
        item = self._next(history)
        if isinstance(item, Exception):
            raise item
        events = item if isinstance(item, list) else reply_events(item)
        for event in events:
            if isinstance(event, Exception):
                raise event
            yield event


class FakeQueryBackend:
    """Stands in for BigQuery: records queries and returns fixed rows."""

    name = "bigquery"

    def __init__(self, rows: list[dict[str, Any]] | None = None, error: str | None = None):
        self.rows = rows if rows is not None else [{"f0_": 1}]
        self.error = error
        self.queries: list[str] = []

    async def run(self, config: ClientConfig, args: dict[str, Any]) -> dict[str, Any]:
        self.queries.append(args[config.query_argument])
        if self.error:
            raise BackendError(f"BigQuery Error: {self.error}")
        return {"rows": self.rows, "totalRows": len(self.rows)}


WEATHER_TOOL = ToolCreate(
    name="get_weather",
    description="Get the current weather for a given location",
    type=ToolType.WEBHOOK,
    config={
        "url": "https://weather.example.com/v1/{city}",
        "method": "GET",
        "headers": {"X-Api-Key": "secret"},
        "parameters": [
            {"name": "city", "location": "path", "required": True},
            {"name": "units", "location": "query"},
        ],
    },
    input_schema={
        "type": "object",
        "properties": {"city": {"type": "string"}, "units": {"type": "string", "enum": ["metric", "imperial"]}},
        "required": ["city"],
    },
)


