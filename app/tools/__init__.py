"""Tool registry, executor and backends."""

from app.tools.executor import ToolExecutor
from app.tools.registry import ToolRegistry, get_tool_registry

__all__ = ["ToolExecutor", "ToolRegistry", "get_tool_registry"]
