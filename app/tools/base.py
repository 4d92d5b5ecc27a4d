"""Base types shared by the tool backends."""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from app.models.tools import ClientConfig

FunctionHandler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class ToolResult:
    """Normalized output of a successful tool execution."""

    output: Any

    def as_content(self) -> str:
        """Serialize the output for a tool-result turn."""
        if isinstance(self.output, str):
            return self.output
        return json.dumps(self.output, default=str)


class ClientBackend(Protocol):
    """A backend for ``client`` tools, e.g. a query executor."""

    name: str

    async def run(self, config: ClientConfig, args: dict[str, Any]) -> Any:
        """Execute one call. Failures are raised as ``BackendError``."""
        ...
