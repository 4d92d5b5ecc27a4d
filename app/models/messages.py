"""Message and tool-call data models.

These are the wire shapes exchanged with the UI and persisted as the final history.
They are provider-agnostic: adapters translate them to and from each LLM API.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator


class ToolCallStatus(StrEnum):
    """Progress of a single tool call."""

    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.COMPLETED, ToolCallStatus.FAILED)


_ALLOWED_TRANSITIONS: dict[ToolCallStatus, tuple[ToolCallStatus, ...]] = {
    ToolCallStatus.PENDING: (ToolCallStatus.EXECUTING,),
    ToolCallStatus.EXECUTING: (ToolCallStatus.COMPLETED, ToolCallStatus.FAILED),
    ToolCallStatus.COMPLETED: (),
    ToolCallStatus.FAILED: (),
}


class FunctionCall(BaseModel):
    """Name and raw JSON-encoded arguments of a requested function."""

    name: str
    arguments: str = ""


class ToolCall(BaseModel):
    """A model-issued request to execute a registered tool."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall
    status: ToolCallStatus = ToolCallStatus.PENDING

    @property
    def name(self) -> str:
        return self.function.name

    def transition(self, status: ToolCallStatus) -> "ToolCall":
        """Return a copy of this call moved to ``status``.

        Raises:
            ValueError: If the move would skip or revisit a state
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(f"Tool call {self.id} cannot move from {self.status} to {status}")
        return self.model_copy(update={"status": status}, deep=True)


# Content block types
class TextBlock(BaseModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str

    class Config:
        extra = "ignore"


class ToolInvocationBlock(BaseModel):
    """Marks where a tool call was requested among the assistant's prose."""

    type: Literal["tool_invocation"] = "tool_invocation"
    id: str
    name: str

    class Config:
        extra = "ignore"


class ToolResultBlock(BaseModel):
    """Tool result content block."""

    type: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    content: str
    is_error: bool = False

    class Config:
        extra = "ignore"


ContentBlock = Annotated[TextBlock | ToolInvocationBlock | ToolResultBlock, Field(discriminator="type")]


class Message(BaseModel):
    """One turn in a conversation."""

    role: Literal["user", "assistant", "tool"]
    content: str | list[ContentBlock] = ""
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    @model_validator(mode="after")
    def check_role_fields(self) -> "Message":
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("tool messages require tool_call_id")
        if self.role != "tool" and self.tool_call_id is not None:
            raise ValueError("tool_call_id is only valid on tool messages")
        if self.role != "assistant" and self.tool_calls:
            raise ValueError("tool_calls are only valid on assistant messages")
        return self

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str | list[Any] = "", tool_calls: list[ToolCall] | None = None) -> "Message":
        return cls(role="assistant", content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> "Message":
        return cls(role="tool", tool_call_id=tool_call_id, content=content)

    @property
    def text(self) -> str:
        """Concatenated prose of this message, ignoring tool blocks."""
        if isinstance(self.content, str):
            return self.content
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))
