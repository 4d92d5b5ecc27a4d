"""Chat request/response models and turn events."""

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from app.models.messages import Message, ToolCallStatus


class TurnState(StrEnum):
    """States of one user turn."""

    AWAITING_MODEL = "awaiting_model"
    TOOL_REQUESTED = "tool_requested"
    TOOL_EXECUTING = "tool_executing"
    TOOL_RESULT_READY = "tool_result_ready"
    MODEL_RESPONDED_TEXT = "model_responded_text"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.MODEL_RESPONDED_TEXT, TurnState.ERRORED)


# Events delivered to the transport, in the order the turn produces them
class ContentEvent(BaseModel):
    """A streamed chunk of assistant prose."""

    type: Literal["content"] = "content"
    content: str


class AssistantMessageEvent(BaseModel):
    """An assistant turn requesting tools was appended (calls are ``pending``)."""

    type: Literal["assistant_message"] = "assistant_message"
    message: Message


class ToolCallStartEvent(BaseModel):
    """A tool call is being dispatched; it is ``executing`` from here on."""

    type: Literal["tool_call_start"] = "tool_call_start"
    tool_call_id: str
    name: str
    status: ToolCallStatus = ToolCallStatus.EXECUTING


class ToolCallResultEvent(BaseModel):
    """A tool call finished and its result turn was appended."""

    type: Literal["tool_call_result"] = "tool_call_result"
    tool_call_id: str
    name: str
    status: ToolCallStatus
    message: Message


class FinalResponseEvent(BaseModel):
    """The turn ended with a text reply."""

    type: Literal["final_response"] = "final_response"
    message: Message
    messages: list[Message]


class ErrorEvent(BaseModel):
    """The turn failed. ``messages`` holds everything completed before the failure."""

    type: Literal["error"] = "error"
    error: str
    error_type: str
    pending_tool_call_ids: list[str] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)


TurnEvent = Annotated[
    ContentEvent | AssistantMessageEvent | ToolCallStartEvent | ToolCallResultEvent | FinalResponseEvent | ErrorEvent,
    Field(discriminator="type"),
]


class ChatRequest(BaseModel):
    """Request model for the chat endpoint."""

    messages: list[Message] = Field(default_factory=list)
    message: str | None = None
    provider: Literal["anthropic", "openai"] | None = None
    stream: bool = False


class ChatResponse(BaseModel):
    """Response model for a completed turn."""

    messages: list[Message]
    state: TurnState


class ChatErrorResponse(BaseModel):
    """Response model for a turn that ended in ``errored``."""

    error: str
    error_type: str
    state: TurnState = TurnState.ERRORED
    pending_tool_call_ids: list[str] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
