"""API endpoints for the tool-calling chat service."""

from contextlib import aclosing
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app import __version__
from app.errors import HistoryError, ProviderError
from app.models.conversation import ChatErrorResponse, ChatRequest, ChatResponse, HealthResponse, TurnState
from app.models.tools import Tool, ToolCreate, ToolExecution
from app.services.conversation import ConversationService, get_conversation_service
from app.tools.registry import ToolRegistry, get_tool_registry
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _wants_stream(request: Request, chat_request: ChatRequest) -> bool:
    return chat_request.stream or "text/event-stream" in request.headers.get("accept", "")


@router.post(
    "/api/chat",
    response_model=ChatResponse,
    responses={502: {"model": ChatErrorResponse}},
    tags=["Chat"],
)
async def chat(
    chat_request: ChatRequest,
    request: Request,
    service: ConversationService = Depends(get_conversation_service),
):
    """Answer the last user message, running any tools the model requests.

    Returns the full updated history, or a Server-Sent-Events stream of turn events
    terminated by ``[DONE]`` when streaming is requested.
    """
    try:
        if _wants_stream(request, chat_request):
            events = service.stream_turn(chat_request)
        else:
            result = await service.run_turn(chat_request)
    except HistoryError as e:
        logger.warning(f"Rejected chat history: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ValueError as e:
        logger.warning(f"Chat request validation error: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ProviderError as e:
        logger.error(f"Model provider unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e)) from e

    if _wants_stream(request, chat_request):

        async def event_stream():
            async with aclosing(events) as turn_events:
                async for event in turn_events:
                    if await request.is_disconnected():
                        logger.info("Client disconnected, abandoning turn")
                        return
                    yield f"data: {event.model_dump_json(exclude_none=True)}\n\n"
            yield "data: [DONE]\n\n"

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    if result.state == TurnState.ERRORED:
        error_response = ChatErrorResponse(
            error=result.error or "Unknown error",
            error_type=result.error_type or "ToolchatError",
            pending_tool_call_ids=[call.id for call in result.pending_tool_calls],
            messages=result.messages,
        )
        return JSONResponse(status_code=502, content=error_response.model_dump(mode="json", exclude_none=True))

    return ChatResponse(messages=result.messages, state=result.state)


@router.get("/api/tools", response_model=list[Tool], tags=["Tools"])
async def list_tools(registry: ToolRegistry = Depends(get_tool_registry)) -> list[Tool]:
    """List registered tools."""
    return registry.list_tools()


@router.post("/api/tools", response_model=Tool, status_code=201, tags=["Tools"])
async def create_tool(definition: ToolCreate, registry: ToolRegistry = Depends(get_tool_registry)) -> Tool:
    """Register a new tool."""
    try:
        return registry.register_tool(definition)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.get("/api/tools/{name}", response_model=Tool, tags=["Tools"])
async def get_tool(name: str, registry: ToolRegistry = Depends(get_tool_registry)) -> Tool:
    """Get one tool by name."""
    tool = registry.get_tool(name)
    if tool is None:
        raise HTTPException(status_code=404, detail=f"Tool not found: {name}")
    return tool


@router.delete("/api/tools/{name}", status_code=204, tags=["Tools"])
async def delete_tool(name: str, registry: ToolRegistry = Depends(get_tool_registry)) -> None:
    """Remove a tool. Its execution history is kept."""
    if not registry.remove_tool(name):
        raise HTTPException(status_code=404, detail=f"Tool not found: {name}")


@router.get("/api/tools/{name}/executions", response_model=list[ToolExecution], tags=["Tools"])
async def list_tool_executions(name: str, registry: ToolRegistry = Depends(get_tool_registry)) -> list[ToolExecution]:
    """List the execution log of one tool, oldest first."""
    tool = registry.get_tool(name)
    if tool is None:
        raise HTTPException(status_code=404, detail=f"Tool not found: {name}")
    return registry.list_executions(tool.id)


@router.post("/api/setup-default-tools", tags=["Tools"])
async def setup_default_tools(registry: ToolRegistry = Depends(get_tool_registry)) -> dict:
    """Register the built-in tools if they are missing."""
    created = registry.setup_default_tools()
    if created:
        return {"message": "Default tools created", "tools": [tool.name for tool in created]}
    return {"message": "Default tools already exist", "tools": []}


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
