"""Tests for API endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.errors import ProviderError
from app.main import app
from app.models.llm import TextReply
from app.services.conversation import ConversationService, get_conversation_service
from app.tools.registry import get_tool_registry
from helpers import ScriptedAdapter, tool_call, tool_reply

client = TestClient(app)


def sse_events(response) -> list:
    """Parse an SSE body into decoded events, keeping the ``[DONE]`` marker as a string."""
    events = []
    for line in response.text.splitlines():
        if not line.startswith("data: "):
            continue
        data = line[len("data: ") :]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


@pytest.fixture
def wire(registry, executor):
    """Route the chat and tool endpoints to a scripted model and the test registry."""

    def install(*script) -> ScriptedAdapter:
        adapter = ScriptedAdapter(script)
        service = ConversationService(registry, executor, adapter_factory=lambda provider: adapter, settings=Settings())
        app.dependency_overrides[get_conversation_service] = lambda: service
        app.dependency_overrides[get_tool_registry] = lambda: registry
        return adapter

    yield install
    app.dependency_overrides.clear()


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_200(self):
        """Test that health check returns 200 status."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_check_response_structure(self):
        """Test that health check returns expected JSON structure."""
        response = client.get("/health")
        data = response.json()

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert "timestamp" in data

    def test_health_check_content_type(self):
        """Test that health check returns JSON content type."""
        response = client.get("/health")
        assert response.headers["content-type"] == "application/json"


class TestChatEndpoint:
    """Tests for the chat endpoint in JSON mode."""

    def test_text_turn(self, wire):
        """Test that a direct answer returns the updated history."""
        wire(TextReply(content="4"))

        response = client.post("/api/chat", json={"messages": [], "message": "What's 2+2?"})

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "model_responded_text"
        assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
        assert data["messages"][-1]["content"] == "4"

    def test_last_message_may_carry_the_question(self, wire):
        """Test that the user message can be the last entry of ``messages``."""
        adapter = wire(TextReply(content="Hello!"))

        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

        assert response.status_code == 200
        assert [m.text for m in adapter.histories[0]] == ["Hi"]

    def test_tool_turn(self, wire, query_backend):
        """Test that tool calls run and appear in the returned history."""
        wire(
            tool_reply(tool_call("call_1", "bigquery", '{"query":"SELECT 1"}')),
            TextReply(content="One row."),
        )

        response = client.post("/api/chat", json={"message": "Query"})

        data = response.json()
        assert [m["role"] for m in data["messages"]] == ["user", "assistant", "tool", "assistant"]
        assert data["messages"][1]["tool_calls"][0]["status"] == "completed"
        assert data["messages"][2]["tool_call_id"] == "call_1"
        assert query_backend.queries == ["SELECT 1"]

    def test_provider_failure_returns_502(self, wire):
        """Test that a failed turn reports the error and partial history."""
        wire(ProviderError("Anthropic API error: overloaded", status_code=529, retryable=True))

        response = client.post("/api/chat", json={"message": "Hi"})

        assert response.status_code == 502
        data = response.json()
        assert data["error"] == "Anthropic API error: overloaded"
        assert data["error_type"] == "ProviderError"
        assert data["state"] == "errored"
        assert [m["role"] for m in data["messages"]] == ["user"]

    def test_round_limit_lists_pending_calls(self, wire):
        """Test that calls refused at the round limit are reported as pending."""
        wire(*[tool_reply(tool_call(f"call_{i}", "bigquery", '{"query":"SELECT 1"}')) for i in range(11)])

        response = client.post("/api/chat", json={"message": "Loop"})

        assert response.status_code == 502
        data = response.json()
        assert data["error_type"] == "ProtocolError"
        assert data["pending_tool_call_ids"] == ["call_10"]
        assert data["messages"][-1]["tool_calls"][0]["status"] == "pending"

    def test_last_message_must_be_from_user(self, wire):
        """Test that a history ending in an assistant message is rejected."""
        wire()

        response = client.post("/api/chat", json={"messages": [{"role": "assistant", "content": "Hello"}]})

        assert response.status_code == 400

    def test_unanswered_tool_call_is_rejected(self, wire):
        """Test that inbound history must be referentially complete."""
        wire()
        messages = [
            {"role": "user", "content": "Query"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"id": "c1", "function": {"name": "bigquery", "arguments": "{}"}}],
            },
        ]

        response = client.post("/api/chat", json={"messages": messages, "message": "Well?"})

        assert response.status_code == 400
        assert "c1" in response.json()["detail"]

    def test_orphan_tool_result_is_rejected(self, wire):
        """Test that a tool result without a prior call is rejected."""
        wire()
        messages = [{"role": "user", "content": "Hi"}, {"role": "tool", "tool_call_id": "ghost", "content": "boo"}]

        response = client.post("/api/chat", json={"messages": messages, "message": "Hello?"})

        assert response.status_code == 400

    def test_message_too_long(self, wire):
        """Test that oversized user messages are rejected before any model call."""
        adapter = wire(TextReply(content="unused"))

        response = client.post("/api/chat", json={"message": "word " * 10_000})

        assert response.status_code == 400
        assert "too long" in response.json()["detail"]
        assert adapter.histories == []

    def test_invalid_message_shape_returns_422(self, wire):
        """Test that malformed messages fail request validation."""
        wire()

        response = client.post("/api/chat", json={"messages": [{"role": "tool", "content": "x"}]})

        assert response.status_code == 422


class TestChatStreaming:
    """Tests for the chat endpoint in SSE mode."""

    def test_stream_events_in_order(self, wire):
        """Test that events arrive in turn order and end with [DONE]."""
        wire(
            tool_reply(tool_call("call_1", "bigquery", '{"query":"SELECT 1"}')),
            TextReply(content="One row."),
        )

        response = client.post("/api/chat", json={"message": "Query", "stream": True})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response)
        assert events[-1] == "[DONE]"
        types = [e["type"] for e in events[:-1] if e["type"] != "content"]
        assert types == ["assistant_message", "tool_call_start", "tool_call_result", "final_response"]
        content = "".join(e["content"] for e in events[:-1] if e["type"] == "content")
        assert content == "One row."
        assert [m["role"] for m in events[-2]["messages"]] == ["user", "assistant", "tool", "assistant"]

    def test_accept_header_selects_streaming(self, wire):
        """Test that Accept: text/event-stream streams without the flag."""
        wire(TextReply(content="Hi!"))

        response = client.post("/api/chat", json={"message": "Hi"}, headers={"Accept": "text/event-stream"})

        assert sse_events(response)[-1] == "[DONE]"

    def test_stream_error_event(self, wire):
        """Test that a failing turn yields one error event followed by [DONE]."""
        wire(ProviderError("network down"))

        response = client.post("/api/chat", json={"message": "Hi", "stream": True})

        events = sse_events(response)
        assert events[-1] == "[DONE]"
        assert [e["type"] for e in events[:-1]] == ["error"]
        assert events[0]["error"] == "network down"

    def test_stream_validation_happens_before_streaming(self, wire):
        """Test that bad history is rejected with 400 rather than an event stream."""
        wire()

        response = client.post("/api/chat", json={"messages": [], "stream": True})

        assert response.status_code == 400


class TestToolEndpoints:
    """Tests for tool registration and the execution log."""

    def test_list_tools(self, wire):
        """Test that registered tools are listed."""
        wire()

        response = client.get("/api/tools")

        assert response.status_code == 200
        assert [t["name"] for t in response.json()] == ["bigquery", "get_weather"]

    def test_create_and_get_tool(self, wire):
        """Test registering a tool with the camelCase schema key."""
        wire()
        definition = {
            "name": "lookup_order",
            "description": "Look up an order by id",
            "type": "webhook",
            "config": {"url": "https://orders.example.com/{order_id}", "method": "GET"},
            "inputSchema": {"type": "object", "properties": {"order_id": {"type": "string"}}},
        }

        created = client.post("/api/tools", json=definition)
        fetched = client.get("/api/tools/lookup_order")

        assert created.status_code == 201
        assert created.json()["id"] == 3
        assert fetched.json()["input_schema"]["properties"]["order_id"] == {"type": "string"}

    def test_duplicate_tool_returns_409(self, wire):
        """Test that tool names are unique."""
        wire()
        definition = {"name": "bigquery", "description": "again", "input_schema": {"type": "object"}}

        response = client.post("/api/tools", json=definition)

        assert response.status_code == 409

    def test_invalid_tool_returns_422(self, wire):
        """Test that non-object schemas are refused."""
        wire()
        definition = {"name": "bad", "description": "d", "input_schema": {"type": "array"}}

        response = client.post("/api/tools", json=definition)

        assert response.status_code == 422

    def test_unknown_tool_returns_404(self, wire):
        """Test that missing tools return 404."""
        wire()

        assert client.get("/api/tools/nope").status_code == 404
        assert client.delete("/api/tools/nope").status_code == 404
        assert client.get("/api/tools/nope/executions").status_code == 404

    def test_delete_tool(self, wire, registry):
        """Test that removed tools are no longer offered."""
        wire()

        response = client.delete("/api/tools/get_weather")

        assert response.status_code == 204
        assert not registry.has_tool("get_weather")

    def test_executions_are_listed_after_a_turn(self, wire):
        """Test that a turn's tool calls show up in the execution log."""
        wire(
            tool_reply(tool_call("call_1", "bigquery", '{"query":"SELECT 1"}')),
            TextReply(content="Done."),
        )
        client.post("/api/chat", json={"message": "Query"})

        response = client.get("/api/tools/bigquery/executions")

        executions = response.json()
        assert len(executions) == 1
        assert executions[0]["input"] == {"query": "SELECT 1"}
        assert executions[0]["error"] is None

    def test_setup_default_tools(self, wire, registry):
        """Test that setup only creates missing built-in tools."""
        wire()

        first = client.post("/api/setup-default-tools")
        registry.remove_tool("bigquery")
        second = client.post("/api/setup-default-tools")

        assert first.json() == {"message": "Default tools already exist", "tools": []}
        assert second.json() == {"message": "Default tools created", "tools": ["bigquery"]}


class TestProviderSelection:
    """Tests for per-request provider selection."""

    def test_requested_provider_is_passed_to_factory(self, registry, executor):
        """Test that the ``provider`` field picks the adapter."""
        requested = []

        def factory(provider):
            requested.append(provider)
            return ScriptedAdapter([TextReply(content="Hi!")])

        service = ConversationService(registry, executor, adapter_factory=factory, settings=Settings())
        app.dependency_overrides[get_conversation_service] = lambda: service
        try:
            response = client.post("/api/chat", json={"message": "Hi", "provider": "openai"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        assert requested == ["openai"]

    def test_unavailable_provider_returns_503(self, registry, executor):
        """Test that a provider without credentials is reported as unavailable."""

        def factory(provider):
            raise ValueError("OPENAI_API_KEY environment variable is required")

        service = ConversationService(registry, executor, adapter_factory=factory, settings=Settings())
        app.dependency_overrides[get_conversation_service] = lambda: service
        try:
            response = client.post("/api/chat", json={"message": "Hi", "provider": "openai"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503
        assert "OPENAI_API_KEY" in response.json()["detail"]

    def test_unknown_provider_returns_422(self):
        """Test that only supported providers are accepted."""
        response = client.post("/api/chat", json={"message": "Hi", "provider": "gemini"})

        assert response.status_code == 422
