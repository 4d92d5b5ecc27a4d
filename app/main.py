"""Main FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import __version__
from app.api.endpoints import router
from app.services.conversation import close_conversation_service
from app.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_conversation_service()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Toolchat",
    description=(
        "Chat with an LLM assistant that can call registered tools (webhooks, BigQuery "
        "queries, or model-native functions) mid-conversation."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Chat",
            "description": "Run a conversation turn, as a single JSON response or a Server-Sent-Events stream.",
        },
        {
            "name": "Tools",
            "description": "Register tools and inspect their execution log.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
