"""Tests for the in-memory tool registry."""

import pytest
from pydantic import ValidationError

from app.models.tools import ToolCreate
from app.tools.registry import BIGQUERY_TOOL, ToolRegistry
from helpers import WEATHER_TOOL


class TestToolRegistry:
    """Registration, lookup and the execution log."""

    def test_ids_are_assigned_in_order(self, registry):
        assert [(t.id, t.name) for t in registry.list_tools()] == [(1, "bigquery"), (2, "get_weather")]

    def test_duplicate_name_is_rejected(self, registry):
        with pytest.raises(ValueError, match="already exists"):
            registry.register_tool(BIGQUERY_TOOL)

    def test_get_missing_tool(self, registry):
        assert registry.get_tool("nope") is None
        assert not registry.has_tool("nope")

    def test_remove_keeps_executions(self, registry):
        tool = registry.get_tool("get_weather")
        registry.record_execution(tool.id, {"city": "Paris"}, output={"temperature": 21})

        assert registry.remove_tool("get_weather") is True
        assert registry.remove_tool("get_weather") is False
        assert len(registry.list_executions(tool.id)) == 1

    def test_ids_are_not_reused_after_removal(self, registry):
        registry.remove_tool("get_weather")

        tool = registry.register_tool(WEATHER_TOOL)

        assert tool.id == 3

    def test_executions_are_append_only(self, registry):
        first = registry.record_execution(1, {"query": "SELECT 1"}, output={"rows": []})
        second = registry.record_execution(1, {"query": "SELECT"}, error="BigQuery Error: syntax")
        registry.record_execution(2, {"city": "Paris"}, output={})

        assert first.id != second.id
        assert registry.list_executions(1) == [first, second]
        assert len(registry.list_executions()) == 3
        with pytest.raises(ValidationError):
            first.error = "changed"

    def test_setup_default_tools_is_idempotent(self):
        registry = ToolRegistry()

        created = registry.setup_default_tools()

        assert [t.name for t in created] == ["bigquery"]
        assert registry.setup_default_tools() == []

    def test_registered_tool_keeps_definition(self):
        registry = ToolRegistry()
        definition = ToolCreate(name="ping", description="Ping", input_schema={"type": "object"})

        tool = registry.register_tool(definition)

        assert tool.input_schema == {"type": "object"}
        assert tool.created_at <= tool.updated_at
