"""Error taxonomy for tool execution and model calls."""

from typing import Any


class ToolchatError(Exception):
    """Base class for all service errors."""


class ToolExecutionError(ToolchatError):
    """A tool call failed. Recoverable: the message is fed back to the model."""


class ValidationError(ToolExecutionError):
    """Tool arguments did not satisfy the tool's input schema."""


class BackendError(ToolExecutionError):
    """The tool backend reported a failure."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProviderError(ToolchatError):
    """The LLM call itself failed. Fatal for the current turn."""

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class ProtocolError(ToolchatError):
    """A provider reply or event stream could not be interpreted. Fatal for the current turn."""


class HistoryError(ToolchatError):
    """A submitted conversation history is not well formed."""
