"""LLM-related data models and types (provider-agnostic)."""

from dataclasses import dataclass, field

from app.models.messages import ContentBlock, ToolCall


@dataclass
class LLMUsage:
    """Token usage information from LLM provider."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


# Model replies
@dataclass
class TextReply:
    """Terminal reply: the model answered without requesting tools."""

    content: str
    usage: LLMUsage | None = None


@dataclass
class ToolCallReply:
    """The model requested one or more tool calls, possibly alongside prose."""

    tool_calls: list[ToolCall]
    content: list[ContentBlock] = field(default_factory=list)
    usage: LLMUsage | None = None


ModelReply = TextReply | ToolCallReply


# Streaming events
@dataclass
class ContentDelta:
    """A chunk of assistant prose, in emission order."""

    text: str


@dataclass
class ToolCallStarted:
    """The model began a tool call. Always precedes that call's argument deltas."""

    id: str
    name: str


@dataclass
class ToolCallArgumentDelta:
    """A fragment of a tool call's JSON-encoded arguments."""

    id: str
    delta: str


@dataclass
class StreamDone:
    """End of one model reply."""

    stop_reason: str | None = None
    usage: LLMUsage | None = None


ModelEvent = ContentDelta | ToolCallStarted | ToolCallArgumentDelta | StreamDone
