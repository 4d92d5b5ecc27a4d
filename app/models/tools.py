"""Registered tool and execution audit models."""

import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from jsonschema import SchemaError
from jsonschema.validators import validator_for
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

TOOL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


class ToolType(StrEnum):
    """How a tool is executed."""

    FUNCTION = "function"
    WEBHOOK = "webhook"
    CLIENT = "client"


class WebhookParameter(BaseModel):
    """Maps one tool argument onto part of the outgoing HTTP request."""

    name: str
    location: Literal["path", "query", "body", "header"] = "body"
    required: bool = False


class WebhookConfig(BaseModel):
    """Backend parameters for ``webhook`` tools."""

    url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    parameters: list[WebhookParameter] = Field(default_factory=list)
    timeout: float | None = None

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class ClientConfig(BaseModel):
    """Backend parameters for ``client`` tools such as the BigQuery executor."""

    backend: str = "bigquery"
    project: str | None = None
    location: str | None = None
    maximum_bytes_billed: int | None = Field(default=None, gt=0)
    query_argument: str = "query"


class ToolCreate(BaseModel):
    """Request model for registering a tool."""

    name: str
    description: str
    type: ToolType = ToolType.FUNCTION
    input_schema: dict[str, Any] = Field(validation_alias=AliasChoices("input_schema", "inputSchema"))
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not TOOL_NAME_PATTERN.match(v):
            raise ValueError("Tool name must be 1-64 letters, digits, underscores or hyphens")
        return v

    @field_validator("input_schema")
    @classmethod
    def validate_input_schema(cls, v: dict[str, Any]) -> dict[str, Any]:
        # Both providers reject tool schemas that are not objects
        if v.get("type") != "object":
            raise ValueError('input_schema.type must be "object"')
        try:
            validator_for(v).check_schema(v)
        except SchemaError as e:
            raise ValueError(f"input_schema is not a valid JSON Schema: {e.message}") from e
        return v

    @model_validator(mode="after")
    def validate_config(self) -> "ToolCreate":
        config_model = {ToolType.WEBHOOK: WebhookConfig, ToolType.CLIENT: ClientConfig}.get(self.type)
        if config_model is not None:
            try:
                config_model.model_validate(self.config)
            except PydanticValidationError as e:
                raise ValueError(f"Invalid {self.type} config: {e.errors()[0]['msg']}") from e
        return self


class Tool(ToolCreate):
    """A registered capability the model may invoke."""

    id: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def webhook_config(self) -> WebhookConfig:
        return WebhookConfig.model_validate(self.config)

    def client_config(self) -> ClientConfig:
        return ClientConfig.model_validate(self.config)


class ToolExecution(BaseModel):
    """Append-only audit record of one tool dispatch."""

    id: str
    tool_id: int
    input: Any
    output: Any = None
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    class Config:
        frozen = True
