"""Shared fixtures: registry, fake backends and a tool executor wired to them."""

import httpx
import pytest

from app.tools.executor import ToolExecutor
from app.tools.registry import BIGQUERY_TOOL, ToolRegistry
from helpers import WEATHER_TOOL, FakeQueryBackend


@pytest.fixture
def registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_tool(BIGQUERY_TOOL)
    registry.register_tool(WEATHER_TOOL)
    return registry


@pytest.fixture
def query_backend() -> FakeQueryBackend:
    return FakeQueryBackend()


@pytest.fixture
def webhook_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def webhook_status() -> dict[str, int]:
    """Mutable status code returned by the fake webhook server."""
    return {"code": 200}


@pytest.fixture
def http_client(webhook_requests, webhook_status) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        webhook_requests.append(request)
        if webhook_status["code"] >= 400:
            return httpx.Response(webhook_status["code"], text="upstream exploded")
        return httpx.Response(webhook_status["code"], json={"temperature": 21, "path": request.url.path})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def executor(registry, http_client, query_backend) -> ToolExecutor:
    return ToolExecutor(registry, http_client=http_client, client_backends={"bigquery": query_backend})
