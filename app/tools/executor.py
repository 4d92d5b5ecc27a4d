"""Tool executor: validates arguments, dispatches to a backend and logs every attempt."""

import asyncio
import json
from typing import Any

import httpx
from jsonschema.validators import validator_for
from pydantic import ValidationError as PydanticValidationError

from app.errors import BackendError, ToolExecutionError, ValidationError
from app.models.tools import Tool, ToolType
from app.tools.base import ClientBackend, FunctionHandler, ToolResult
from app.tools.registry import ToolStore
from app.tools.webhook import call_webhook
from app.utils.logging import get_logger

logger = get_logger(__name__)


def parse_arguments(raw_arguments: str) -> dict[str, Any]:
    """Decode a tool call's raw JSON arguments. An empty string means no arguments.

    Raises:
        ValidationError: If the arguments are not a JSON object
    """
    if not raw_arguments or not raw_arguments.strip():
        return {}
    try:
        args = json.loads(raw_arguments)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Tool arguments are not valid JSON: {e.msg}") from e
    if not isinstance(args, dict):
        raise ValidationError("Tool arguments must be a JSON object")
    return args


def validate_arguments(tool: Tool, args: Any) -> None:
    """Check ``args`` against the tool's input schema.

    Raises:
        ValidationError: Listing every violation found
    """
    validator = validator_for(tool.input_schema)(tool.input_schema)
    errors = sorted(validator.iter_errors(args), key=lambda e: list(e.path))
    if errors:
        details = "; ".join(
            f"{'/'.join(str(p) for p in error.path) or '<root>'}: {error.message}" for error in errors
        )
        raise ValidationError(f"Invalid arguments for tool {tool.name}: {details}")


class ToolExecutor:
    """Runs tool calls against their backends.

    Every attempt, successful or not, is written to the registry's execution log
    exactly once before ``execute`` returns or raises.
    """

    def __init__(
        self,
        registry: ToolStore,
        http_client: httpx.AsyncClient | None = None,
        client_backends: dict[str, ClientBackend] | None = None,
        function_handlers: dict[str, FunctionHandler] | None = None,
        webhook_timeout: float = 30.0,
    ):
        self.registry = registry
        self.http_client = http_client
        self.client_backends = dict(client_backends or {})
        self.function_handlers = dict(function_handlers or {})
        self.webhook_timeout = webhook_timeout

    def register_function(self, name: str, handler: FunctionHandler) -> None:
        """Attach an in-process handler to a ``function`` tool."""
        self.function_handlers[name] = handler

    def _get_http_client(self) -> httpx.AsyncClient:
        if self.http_client is None:
            self.http_client = httpx.AsyncClient()
        return self.http_client

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()

    async def _dispatch(self, tool: Tool, args: dict[str, Any]) -> Any:
        try:
            if tool.type == ToolType.WEBHOOK:
                return await call_webhook(self._get_http_client(), tool.webhook_config(), args, self.webhook_timeout)

            if tool.type == ToolType.CLIENT:
                config = tool.client_config()
                backend = self.client_backends.get(config.backend)
                if backend is None:
                    raise BackendError(f"No client backend registered for {config.backend!r}")
                return await backend.run(config, args)

        except PydanticValidationError as e:
            raise BackendError(f"Tool {tool.name} has an invalid {tool.type} config: {e}") from e

        handler = self.function_handlers.get(tool.name)
        if handler is None:
            # Provider-native function: the validated call itself is the result
            return args
        return await handler(args)

    async def execute(self, tool: Tool, args: Any) -> ToolResult:
        """Validate and run one call.

        Raises:
            ValidationError: Arguments violate the input schema; the backend is not contacted
            BackendError: The backend failed
        """
        logger.info(f"Executing {tool.type} tool {tool.name}")
        try:
            validate_arguments(tool, args)
            output = await self._dispatch(tool, args)
        except ToolExecutionError as e:
            # Backend failures keep their full payload, the message is truncated
            self.registry.record_execution(tool.id, args, output=getattr(e, "body", None), error=str(e))
            logger.warning(f"Tool {tool.name} failed: {e}")
            raise
        except asyncio.CancelledError:
            # The backend may still complete remotely; keep the attempt on record
            self.registry.record_execution(tool.id, args, error="cancelled")
            logger.warning(f"Tool {tool.name} cancelled while executing")
            raise
        except Exception as e:
            self.registry.record_execution(tool.id, args, error=str(e))
            logger.error(f"Tool {tool.name} raised unexpectedly: {e}", exc_info=True)
            raise BackendError(f"Tool {tool.name} failed: {e}") from e

        self.registry.record_execution(tool.id, args, output=output)
        logger.debug(f"Tool {tool.name} succeeded: {str(output)[:100]}...")
        return ToolResult(output=output)

    async def execute_call(self, tool: Tool, raw_arguments: str) -> ToolResult:
        """Decode a call's raw JSON arguments, then ``execute``."""
        try:
            args = parse_arguments(raw_arguments)
        except ValidationError as e:
            self.registry.record_execution(tool.id, raw_arguments, error=str(e))
            logger.warning(f"Tool {tool.name} received undecodable arguments: {e}")
            raise
        return await self.execute(tool, args)
