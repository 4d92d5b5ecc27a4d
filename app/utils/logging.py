"""Logging setup shared by the API, the orchestrator and the tool backends."""

import logging
import os
import sys

from pydantic import BaseModel, Field, field_validator

# SDK and HTTP client loggers report every request at INFO
QUIET_LOGGERS = ("anthropic", "openai", "httpx", "httpcore", "google", "urllib3", "uvicorn.access")


class LogConfig(BaseModel):
    """Process-wide logging options."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    quiet_loggers: list[str] = Field(default_factory=lambda: list(QUIET_LOGGERS))
    quiet_level: str = "WARNING"

    @field_validator("level", "quiet_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def from_env(cls) -> "LogConfig":
        return cls(level=os.getenv("LOG_LEVEL", "INFO"))


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root handler once at startup."""
    config = config or LogConfig.from_env()

    logging.basicConfig(
        level=config.level,
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )
    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(config.quiet_level)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Module logger; ``level`` overrides LOG_LEVEL for this logger only."""
    logger = logging.getLogger(name)
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    return logger
