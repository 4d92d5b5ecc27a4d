"""Service configuration loaded from the environment."""

import os
from dataclasses import dataclass

SUPPORTED_PROVIDERS = ("anthropic", "openai")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass
class Settings:
    """Runtime settings for the chat service."""

    provider: str = "anthropic"

    anthropic_model: str = "claude-3-5-sonnet-20241022"
    openai_model: str = "gpt-4o"
    max_tokens: int = 1024
    temperature: float = 0.1
    system_prompt: str = ""

    # Orchestrator
    max_tool_rounds: int = 10
    max_model_retries: int = 0
    retry_delay: float = 1.0
    max_message_tokens: int = 4000

    # Client-side throttling shared by both providers
    requests_per_minute: int = 50
    tokens_per_minute: int = 40_000

    # Tool backends
    webhook_timeout: float = 30.0
    bigquery_project: str | None = None
    bigquery_location: str = "US"
    bigquery_maximum_bytes_billed: int = 1_000_000_000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        provider = os.getenv("LLM_PROVIDER", defaults.provider).lower()
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported LLM_PROVIDER: {provider}")

        return cls(
            provider=provider,
            anthropic_model=os.getenv("ANTHROPIC_MODEL", defaults.anthropic_model),
            openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
            max_tokens=_env_int("LLM_MAX_TOKENS", defaults.max_tokens),
            temperature=_env_float("LLM_TEMPERATURE", defaults.temperature),
            system_prompt=os.getenv("SYSTEM_PROMPT", defaults.system_prompt),
            max_tool_rounds=_env_int("MAX_TOOL_ROUNDS", defaults.max_tool_rounds),
            max_model_retries=_env_int("MAX_MODEL_RETRIES", defaults.max_model_retries),
            retry_delay=_env_float("MODEL_RETRY_DELAY", defaults.retry_delay),
            max_message_tokens=_env_int("MAX_MESSAGE_TOKENS", defaults.max_message_tokens),
            requests_per_minute=_env_int("LLM_REQUESTS_PER_MINUTE", defaults.requests_per_minute),
            tokens_per_minute=_env_int("LLM_TOKENS_PER_MINUTE", defaults.tokens_per_minute),
            webhook_timeout=_env_float("WEBHOOK_TIMEOUT", defaults.webhook_timeout),
            bigquery_project=os.getenv("BIGQUERY_PROJECT") or None,
            bigquery_location=os.getenv("BIGQUERY_LOCATION", defaults.bigquery_location),
            bigquery_maximum_bytes_billed=_env_int(
                "BIGQUERY_MAXIMUM_BYTES_BILLED", defaults.bigquery_maximum_bytes_billed
            ),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
