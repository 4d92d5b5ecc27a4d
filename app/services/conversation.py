"""Conversation service: validates inbound chat requests and runs turns."""

from collections.abc import AsyncIterator, Callable

from app.clients.base import ModelAdapter
from app.clients.rate_limit import estimate_tokens
from app.config import Settings, get_settings
from app.errors import HistoryError, ProviderError
from app.models.conversation import ChatRequest, TurnEvent
from app.models.history import Conversation
from app.models.messages import Message
from app.services.llm import get_model_adapter
from app.services.orchestrator import ConversationOrchestrator, TurnResult
from app.tools.bigquery import BigQueryBackend
from app.tools.executor import ToolExecutor
from app.tools.registry import ToolRegistry, get_tool_registry
from app.utils.logging import get_logger

logger = get_logger(__name__)


class ConversationService:
    """Entry point used by the HTTP layer for chat turns."""

    def __init__(
        self,
        registry: ToolRegistry,
        executor: ToolExecutor,
        adapter_factory: Callable[[str | None], ModelAdapter] = get_model_adapter,
        settings: Settings | None = None,
    ):
        self.registry = registry
        self.executor = executor
        self.adapter_factory = adapter_factory
        self.settings = settings or get_settings()

        logger.info("ConversationService initialized")

    def split_request(self, request: ChatRequest) -> tuple[Conversation, Message]:
        """Separate the prior history from the new user message.

        Raises:
            HistoryError: If there is no user message to answer or the history is inconsistent
            ValueError: If the user message exceeds the token limit
        """
        messages = list(request.messages)
        if request.message is not None:
            messages.append(Message.user(request.message))

        if not messages or messages[-1].role != "user":
            raise HistoryError("The last message must be a user message")

        *prior, user_message = messages
        history = Conversation.of(prior)
        history.validate(complete=True)

        self._validate_message_tokens(user_message.text)
        return history, user_message

    def _validate_message_tokens(self, message: str) -> None:
        token_count = estimate_tokens(message)
        if token_count > self.settings.max_message_tokens:
            raise ValueError(
                f"Your message is too long. Please keep messages under {self.settings.max_message_tokens} tokens."
            )

    def _orchestrator(self, provider: str | None) -> ConversationOrchestrator:
        try:
            adapter = self.adapter_factory(provider)
        except ValueError as e:
            # Missing credentials or unsupported provider
            raise ProviderError(f"Model provider unavailable: {e}") from e

        return ConversationOrchestrator(
            adapter=adapter,
            registry=self.registry,
            executor=self.executor,
            max_tool_rounds=self.settings.max_tool_rounds,
            max_model_retries=self.settings.max_model_retries,
            retry_delay=self.settings.retry_delay,
        )

    async def run_turn(self, request: ChatRequest) -> TurnResult:
        """Answer the request's last user message, returning the full history."""
        history, user_message = self.split_request(request)
        orchestrator = self._orchestrator(request.provider)
        result = await orchestrator.run_turn(history, user_message)

        logger.info(
            f"Turn ended in {result.state} with {len(result.messages)} messages, "
            f"tokens in/out: {result.usage.input_tokens}/{result.usage.output_tokens}"
        )
        return result

    def stream_turn(self, request: ChatRequest) -> AsyncIterator[TurnEvent]:
        """Validate the request eagerly, then return the turn's event stream."""
        history, user_message = self.split_request(request)
        orchestrator = self._orchestrator(request.provider)
        return orchestrator.stream_turn(history, user_message)


_conversation_service: ConversationService | None = None


def get_conversation_service() -> ConversationService:
    """Get or create conversation service instance."""
    global _conversation_service
    if _conversation_service is None:
        settings = get_settings()
        registry = get_tool_registry()
        registry.setup_default_tools()
        executor = ToolExecutor(
            registry,
            client_backends={
                "bigquery": BigQueryBackend(
                    project=settings.bigquery_project,
                    location=settings.bigquery_location,
                    maximum_bytes_billed=settings.bigquery_maximum_bytes_billed,
                )
            },
            webhook_timeout=settings.webhook_timeout,
        )
        _conversation_service = ConversationService(registry, executor, settings=settings)
    return _conversation_service


async def close_conversation_service() -> None:
    """Release the HTTP client held by the service, if one was created."""
    global _conversation_service
    if _conversation_service is not None:
        await _conversation_service.executor.aclose()
        _conversation_service = None
