"""In-memory tool registry and execution log."""

from typing import Any, Protocol

from cuid2 import cuid_wrapper

from app.models.tools import Tool, ToolCreate, ToolExecution, ToolType
from app.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

BIGQUERY_TOOL = ToolCreate(
    name="bigquery",
    description=(
        "Execute BigQuery SQL queries to analyze data. "
        "Use this tool when you need to query data from BigQuery tables."
    ),
    type=ToolType.CLIENT,
    config={"backend": "bigquery"},
    input_schema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The SQL query to execute on BigQuery",
            }
        },
        "required": ["query"],
    },
)


class ToolStore(Protocol):
    """Surface of the tool registry consumed by the orchestrator and executor."""

    def list_tools(self) -> list[Tool]: ...

    def get_tool(self, name: str) -> Tool | None: ...

    def record_execution(
        self, tool_id: int, input: Any, output: Any = None, error: str | None = None
    ) -> ToolExecution: ...


class ToolRegistry:
    """Catalog of registered tools plus the append-only execution log."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._executions: list[ToolExecution] = []
        self._next_id = 1

    def register_tool(self, definition: ToolCreate) -> Tool:
        """Register a new tool.

        Raises:
            ValueError: If a tool with the same name exists
        """
        if definition.name in self._tools:
            raise ValueError(f"Tool already exists: {definition.name}")

        tool = Tool(id=self._next_id, **definition.model_dump())
        self._next_id += 1
        self._tools[tool.name] = tool
        logger.info(f"Registered {tool.type} tool {tool.name} (id={tool.id})")
        return tool

    def remove_tool(self, name: str) -> bool:
        """Remove a tool. Its execution rows are kept."""
        if name in self._tools:
            del self._tools[name]
            logger.info(f"Removed tool {name}")
            return True
        return False

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def record_execution(self, tool_id: int, input: Any, output: Any = None, error: str | None = None) -> ToolExecution:
        """Append one audit row. Rows are never updated."""
        execution = ToolExecution(id=cuid(), tool_id=tool_id, input=input, output=output, error=error)
        self._executions.append(execution)
        logger.debug(f"Recorded execution {execution.id} for tool {tool_id} (error={error is not None})")
        return execution

    def list_executions(self, tool_id: int | None = None) -> list[ToolExecution]:
        return [e for e in self._executions if tool_id is None or e.tool_id == tool_id]

    def setup_default_tools(self) -> list[Tool]:
        """Register the built-in tools that are missing. Returns the ones created."""
        created = []
        if not self.has_tool(BIGQUERY_TOOL.name):
            created.append(self.register_tool(BIGQUERY_TOOL))
        return created


_tool_registry: ToolRegistry | None = None


def get_tool_registry() -> ToolRegistry:
    """Get or create tool registry instance."""
    global _tool_registry
    if _tool_registry is None:
        _tool_registry = ToolRegistry()
    return _tool_registry
