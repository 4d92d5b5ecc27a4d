"""Immutable conversation history."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.errors import HistoryError
from app.models.messages import Message, ToolCall, ToolCallStatus

_messages_adapter = TypeAdapter(list[Message])


@dataclass(frozen=True)
class Conversation:
    """An ordered, immutable sequence of messages.

    Every operation returns a new ``Conversation``; the messages held by an
    instance are never mutated, so one history can safely seed many turns.
    """

    messages: tuple[Message, ...] = ()

    @classmethod
    def of(cls, messages: Iterable[Message]) -> "Conversation":
        return cls(tuple(message.model_copy(deep=True) for message in messages))

    @classmethod
    def from_wire(cls, data: list[dict[str, Any]]) -> "Conversation":
        """Parse a wire-format history.

        Raises:
            HistoryError: If any entry is not a valid message
        """
        try:
            return cls(tuple(_messages_adapter.validate_python(data)))
        except PydanticValidationError as e:
            raise HistoryError(f"Invalid message history: {e}") from e

    def to_wire(self) -> list[dict[str, Any]]:
        return _messages_adapter.dump_python(list(self.messages), mode="json", exclude_none=True)

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def append(self, message: Message) -> "Conversation":
        return Conversation((*self.messages, message))

    def tool_calls(self) -> list[ToolCall]:
        """All tool calls requested so far, in emission order."""
        return [call for message in self.messages for call in (message.tool_calls or [])]

    def find_tool_call(self, call_id: str) -> ToolCall | None:
        for call in self.tool_calls():
            if call.id == call_id:
                return call
        return None

    def with_tool_call_status(self, call_id: str, status: ToolCallStatus) -> "Conversation":
        """Return a history in which tool call ``call_id`` has moved to ``status``."""
        for index, message in enumerate(self.messages):
            if not message.tool_calls or not any(call.id == call_id for call in message.tool_calls):
                continue
            updated_calls = [call.transition(status) if call.id == call_id else call for call in message.tool_calls]
            updated = message.model_copy(update={"tool_calls": updated_calls})
            return Conversation((*self.messages[:index], updated, *self.messages[index + 1 :]))
        raise KeyError(call_id)

    def answered_call_ids(self) -> set[str]:
        return {message.tool_call_id for message in self.messages if message.role == "tool" and message.tool_call_id}

    def pending_tool_calls(self) -> list[ToolCall]:
        """Tool calls that have no result turn yet."""
        answered = self.answered_call_ids()
        return [call for call in self.tool_calls() if call.id not in answered]

    def validate(self, complete: bool = True) -> None:
        """Check referential integrity between tool calls and tool results.

        Args:
            complete: Also require every tool call to have a result turn

        Raises:
            HistoryError: If a result has no prior matching call, a call id repeats,
                a call is answered twice, or (when ``complete``) a call is unanswered
        """
        seen_calls: set[str] = set()
        answered: set[str] = set()

        for position, message in enumerate(self.messages):
            for call in message.tool_calls or []:
                if call.id in seen_calls:
                    raise HistoryError(f"Duplicate tool call id {call.id!r} at message {position}")
                seen_calls.add(call.id)

            if message.role == "tool":
                call_id = message.tool_call_id
                if call_id not in seen_calls:
                    raise HistoryError(f"Tool result at message {position} references unknown call {call_id!r}")
                if call_id in answered:
                    raise HistoryError(f"Tool call {call_id!r} has more than one result")
                answered.add(call_id)

        if complete:
            missing = sorted(seen_calls - answered)
            if missing:
                raise HistoryError(f"Tool calls without results: {', '.join(missing)}")
