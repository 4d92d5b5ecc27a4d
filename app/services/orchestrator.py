"""Conversation orchestrator: turns one user message into an ordered sequence of
model calls, tool executions and result injections.

A turn moves through ``TurnState``::

    awaiting_model -> model_responded_text
    awaiting_model -> tool_requested -> tool_executing -> tool_result_ready -> awaiting_model -> ...

with ``errored`` reachable from any non-terminal state. Each tool call moves through
``pending -> executing -> completed | failed`` and calls are executed strictly in the
order the model emitted them.
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field

from app.clients.base import ModelAdapter
from app.errors import ProtocolError, ProviderError, ToolchatError, ToolExecutionError
from app.models.conversation import (
    AssistantMessageEvent,
    ContentEvent,
    ErrorEvent,
    FinalResponseEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
    TurnEvent,
    TurnState,
)
from app.models.history import Conversation
from app.models.llm import (
    ContentDelta,
    LLMUsage,
    ModelEvent,
    ModelReply,
    StreamDone,
    TextReply,
    ToolCallArgumentDelta,
    ToolCallReply,
    ToolCallStarted,
)
from app.models.messages import (
    ContentBlock,
    FunctionCall,
    Message,
    TextBlock,
    ToolCall,
    ToolCallStatus,
    ToolInvocationBlock,
)
from app.models.tools import Tool
from app.tools.executor import ToolExecutor
from app.tools.registry import ToolStore
from app.utils.logging import get_logger

logger = get_logger(__name__)

_TURN_TRANSITIONS: dict[TurnState, tuple[TurnState, ...]] = {
    TurnState.AWAITING_MODEL: (TurnState.MODEL_RESPONDED_TEXT, TurnState.TOOL_REQUESTED),
    TurnState.TOOL_REQUESTED: (TurnState.TOOL_EXECUTING,),
    TurnState.TOOL_EXECUTING: (TurnState.TOOL_RESULT_READY,),
    TurnState.TOOL_RESULT_READY: (TurnState.TOOL_EXECUTING, TurnState.AWAITING_MODEL),
    TurnState.MODEL_RESPONDED_TEXT: (),
    TurnState.ERRORED: (),
}


@dataclass
class TurnResult:
    """Outcome of one user turn."""

    conversation: Conversation
    state: TurnState
    error: str | None = None
    error_type: str | None = None
    usage: LLMUsage = field(default_factory=LLMUsage)

    @property
    def messages(self) -> list[Message]:
        return list(self.conversation.messages)

    @property
    def pending_tool_calls(self) -> list[ToolCall]:
        """Calls requested during the turn that never produced a result."""
        return self.conversation.pending_tool_calls()


class _TurnRun:
    """Mutable bookkeeping for one turn; the history itself is only ever replaced."""

    def __init__(self, conversation: Conversation):
        self.conversation = conversation
        self.state = TurnState.AWAITING_MODEL
        self.error: ToolchatError | None = None
        self.usage = LLMUsage()

    def transition(self, state: TurnState) -> None:
        if state != TurnState.ERRORED and state not in _TURN_TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid turn transition {self.state} -> {state}")
        if self.state.is_terminal:
            raise RuntimeError(f"Turn already ended in {self.state}")
        logger.debug(f"Turn state {self.state} -> {state}")
        self.state = state

    def append(self, message: Message) -> None:
        self.conversation = self.conversation.append(message)

    def set_call_status(self, call_id: str, status: ToolCallStatus) -> None:
        self.conversation = self.conversation.with_tool_call_status(call_id, status)

    def add_usage(self, usage: LLMUsage | None) -> None:
        if usage:
            self.usage.input_tokens += usage.input_tokens
            self.usage.output_tokens += usage.output_tokens

    def fail(self, error: ToolchatError) -> None:
        self.error = error
        self.transition(TurnState.ERRORED)

    def result(self) -> TurnResult:
        return TurnResult(
            conversation=self.conversation,
            state=self.state,
            error=str(self.error) if self.error else None,
            error_type=type(self.error).__name__ if self.error else None,
            usage=self.usage,
        )


class ReplyAssembler:
    """Folds a model event stream into a single ``ModelReply``."""

    def __init__(self) -> None:
        self.content: list[ContentBlock] = []
        self._calls: dict[str, tuple[str, list[str]]] = {}
        self._done: StreamDone | None = None
        self.received = False

    def feed(self, event: ModelEvent) -> None:
        if self._done is not None:
            raise ProtocolError(f"Model event after end of stream: {type(event).__name__}")
        self.received = True

        if isinstance(event, ContentDelta):
            if self.content and isinstance(self.content[-1], TextBlock):
                self.content[-1] = TextBlock(text=self.content[-1].text + event.text)
            else:
                self.content.append(TextBlock(text=event.text))

        elif isinstance(event, ToolCallStarted):
            if event.id in self._calls:
                raise ProtocolError(f"Tool call {event.id} started twice")
            self._calls[event.id] = (event.name, [])
            self.content.append(ToolInvocationBlock(id=event.id, name=event.name))

        elif isinstance(event, ToolCallArgumentDelta):
            if event.id not in self._calls:
                raise ProtocolError(f"Arguments for tool call {event.id} arrived before it started")
            self._calls[event.id][1].append(event.delta)

        elif isinstance(event, StreamDone):
            self._done = event

        else:
            raise ProtocolError(f"Unknown model event: {event!r}")

    def build(self) -> ModelReply:
        if self._done is None:
            raise ProtocolError("Model stream ended without completing the reply")

        if self._calls:
            tool_calls = [
                ToolCall(id=call_id, function=FunctionCall(name=name, arguments="".join(parts)))
                for call_id, (name, parts) in self._calls.items()
            ]
            return ToolCallReply(tool_calls=tool_calls, content=list(self.content), usage=self._done.usage)

        return TextReply(content=self.text, usage=self._done.usage)

    @property
    def text(self) -> str:
        """Text received so far, across all text blocks."""
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))


class ConversationOrchestrator:
    """Drives the model/tool loop for one conversation turn at a time."""

    def __init__(
        self,
        adapter: ModelAdapter,
        registry: ToolStore,
        executor: ToolExecutor,
        max_tool_rounds: int = 10,
        max_model_retries: int = 0,
        retry_delay: float = 1.0,
    ):
        """Initialize the orchestrator.

        Args:
            adapter: Model adapter for the provider in use
            registry: Tool catalog, read once per turn
            executor: Runs requested tool calls
            max_tool_rounds: Maximum tool-requesting replies per turn
            max_model_retries: Retries for retryable provider failures (0 disables)
            retry_delay: Base delay for exponential backoff between retries
        """
        self.adapter = adapter
        self.registry = registry
        self.executor = executor
        self.max_tool_rounds = max_tool_rounds
        self.max_model_retries = max_model_retries
        self.retry_delay = retry_delay

    async def run_turn(self, history: Conversation | Sequence[Message], user_message: Message) -> TurnResult:
        """Run one turn to completion and return the resulting history."""
        run = self._start(history, user_message)
        async with aclosing(self._drive(run, streaming=False)) as events:
            async for _ in events:
                pass
        return run.result()

    async def stream_turn(
        self, history: Conversation | Sequence[Message], user_message: Message
    ) -> AsyncIterator[TurnEvent]:
        """Run one turn, yielding events in the exact order the turn produces them."""
        run = self._start(history, user_message)
        async with aclosing(self._drive(run, streaming=True)) as events:
            async for event in events:
                yield event

    def _start(self, history: Conversation | Sequence[Message], user_message: Message) -> _TurnRun:
        if user_message.role != "user":
            raise ValueError("A turn must start with a user message")
        conversation = history if isinstance(history, Conversation) else Conversation.of(history)
        run = _TurnRun(conversation)
        run.append(user_message)
        return run

    async def _drive(self, run: _TurnRun, streaming: bool) -> AsyncIterator[TurnEvent]:
        tools = self.registry.list_tools()
        tools_by_name = {tool.name: tool for tool in tools}
        rounds = 0

        logger.info(
            f"Starting turn with {len(run.conversation)} messages, {len(tools)} tools via {self.adapter.provider}"
        )

        # Reply being streamed that has not reached the history yet
        assembler: ReplyAssembler | None = None

        try:
            while True:
                if streaming:
                    assembler = ReplyAssembler()
                    async for event in self._stream_reply(run, tools, assembler):
                        yield event
                    reply = assembler.build()
                else:
                    reply = await self._request_reply(run, tools)
                run.add_usage(reply.usage)

                if isinstance(reply, TextReply):
                    message = Message.assistant(reply.content)
                    run.append(message)
                    run.transition(TurnState.MODEL_RESPONDED_TEXT)
                    logger.info(f"Turn completed after {rounds} tool round(s)")
                    yield FinalResponseEvent(message=message, messages=list(run.conversation.messages))
                    return

                message = self._tool_request_message(run, reply)
                run.append(message)
                assembler = None
                run.transition(TurnState.TOOL_REQUESTED)
                rounds += 1
                logger.info(f"Model requested {len(reply.tool_calls)} tool call(s) in round {rounds}")
                yield AssistantMessageEvent(message=message)

                # Calls stay pending so the caller can see what was refused
                if rounds > self.max_tool_rounds:
                    raise ProtocolError(f"Model requested tools for more than {self.max_tool_rounds} rounds")

                for call in reply.tool_calls:
                    yield ToolCallStartEvent(tool_call_id=call.id, name=call.name)

                    # No suspension point between marking the call and dispatching it
                    run.set_call_status(call.id, ToolCallStatus.EXECUTING)
                    run.transition(TurnState.TOOL_EXECUTING)
                    status, content = await self._execute(call, tools_by_name)

                    run.set_call_status(call.id, status)
                    result_message = Message.tool_result(call.id, content)
                    run.append(result_message)
                    run.transition(TurnState.TOOL_RESULT_READY)
                    yield ToolCallResultEvent(
                        tool_call_id=call.id, name=call.name, status=status, message=result_message
                    )

                run.transition(TurnState.AWAITING_MODEL)

        except (ProviderError, ProtocolError) as e:
            if assembler is not None and assembler.text:
                # Text the caller already received stays in the history
                run.append(Message.assistant(assembler.text))
            run.fail(e)
            pending = [call.id for call in run.conversation.pending_tool_calls()]
            logger.error(f"Turn failed with {type(e).__name__}: {e} (pending tool calls: {pending})")
            yield ErrorEvent(
                error=str(e),
                error_type=type(e).__name__,
                pending_tool_call_ids=pending,
                messages=list(run.conversation.messages),
            )

    def _tool_request_message(self, run: _TurnRun, reply: ToolCallReply) -> Message:
        if not reply.tool_calls:
            raise ProtocolError("Tool request reply carried no tool calls")

        seen = {call.id for call in run.conversation.tool_calls()}
        for call in reply.tool_calls:
            if call.id in seen:
                raise ProtocolError(f"Model reused tool call id {call.id}")
            seen.add(call.id)

        calls = [call.model_copy(update={"status": ToolCallStatus.PENDING}) for call in reply.tool_calls]
        return Message.assistant(list(reply.content), tool_calls=calls)

    async def _execute(self, call: ToolCall, tools_by_name: dict[str, Tool]) -> tuple[ToolCallStatus, str]:
        """Run one call. Tool failures become result text for the model."""
        tool = tools_by_name.get(call.name)
        if tool is None:
            logger.error(f"Unknown tool requested: {call.name}")
            return ToolCallStatus.FAILED, f"Error: Unknown tool: {call.name}"

        try:
            result = await self.executor.execute_call(tool, call.function.arguments)
        except ToolExecutionError as e:
            return ToolCallStatus.FAILED, f"Error: {e!s}"
        return ToolCallStatus.COMPLETED, result.as_content()

    def _should_retry(self, error: ProviderError, attempt: int) -> bool:
        return error.retryable and attempt < self.max_model_retries

    async def _backoff(self, error: ProviderError, attempt: int) -> None:
        delay = self.retry_delay * (2**attempt)
        logger.warning(
            f"Model call failed ({error}), retry {attempt + 1}/{self.max_model_retries} in {delay:.1f}s"
        )
        await asyncio.sleep(delay)

    async def _request_reply(self, run: _TurnRun, tools: list[Tool]) -> ModelReply:
        attempt = 0
        while True:
            try:
                return await self.adapter.send(run.conversation.messages, tools)
            except ProviderError as e:
                if not self._should_retry(e, attempt):
                    raise
                error = e
            except ToolchatError:
                raise
            except Exception as e:
                logger.error(f"Model adapter raised unexpectedly: {e}", exc_info=True)
                raise ProviderError(f"Model call failed: {e}") from e
            await self._backoff(error, attempt)
            attempt += 1

    async def _stream_reply(
        self, run: _TurnRun, tools: list[Tool], assembler: ReplyAssembler
    ) -> AsyncIterator[ContentEvent]:
        attempt = 0
        while True:
            try:
                async with aclosing(self.adapter.send_stream(run.conversation.messages, tools)) as events:
                    async for event in events:
                        assembler.feed(event)
                        if isinstance(event, ContentDelta):
                            yield ContentEvent(content=event.text)
                return
            except ProviderError as e:
                # Once anything reached the caller a retry would duplicate output
                if assembler.received or not self._should_retry(e, attempt):
                    raise
                error = e
            except ToolchatError:
                raise
            except Exception as e:
                logger.error(f"Model stream raised unexpectedly: {e}", exc_info=True)
                raise ProviderError(f"Model stream failed: {e}") from e
            await self._backoff(error, attempt)
            attempt += 1
