"""Model adapter construction and caching."""

from app.clients.anthropic import AnthropicAdapter, AnthropicConfig
from app.clients.base import ModelAdapter
from app.clients.openai import OpenAIAdapter, OpenAIConfig
from app.clients.rate_limit import RateLimiter
from app.config import SUPPORTED_PROVIDERS, Settings, get_settings
from app.utils.logging import get_logger

logger = get_logger(__name__)


def create_model_adapter(provider: str, settings: Settings, rate_limiter: RateLimiter | None = None) -> ModelAdapter:
    """Build the adapter for ``provider`` from settings.

    Raises:
        ValueError: If the provider is unknown or its API key is missing
    """
    if provider == "anthropic":
        return AnthropicAdapter(
            config=AnthropicConfig(
                model=settings.anthropic_model,
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                system_prompt=settings.system_prompt,
            ),
            rate_limiter=rate_limiter,
        )
    if provider == "openai":
        return OpenAIAdapter(
            config=OpenAIConfig(
                model=settings.openai_model,
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                system_prompt=settings.system_prompt,
            ),
            rate_limiter=rate_limiter,
        )
    raise ValueError(f"Unsupported provider: {provider}. Expected one of {', '.join(SUPPORTED_PROVIDERS)}")


_adapters: dict[str, ModelAdapter] = {}
_rate_limiter: RateLimiter | None = None


def get_model_adapter(provider: str | None = None) -> ModelAdapter:
    """Get or create the adapter for ``provider`` (defaults to the configured one)."""
    global _rate_limiter
    settings = get_settings()
    provider = provider or settings.provider

    if provider not in _adapters:
        if _rate_limiter is None:
            _rate_limiter = RateLimiter(settings.requests_per_minute, settings.tokens_per_minute)
        _adapters[provider] = create_model_adapter(provider, settings, _rate_limiter)
        logger.info(f"Created {provider} model adapter")
    return _adapters[provider]
