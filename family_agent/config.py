"""Application configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Only needed when ROUTER_STRATEGY=llm.
    openrouter_api_key: str | None = Field(default=None, alias="OPENROUTER_API_KEY")
    openrouter_model: str = Field(default="openai/gpt-4o-mini", alias="OPENROUTER_MODEL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    router_strategy: Literal["keyword", "llm"] = Field(default="keyword", alias="ROUTER_STRATEGY")
    database_path: Path = Field(default=Path("family_agent.db"), alias="DATABASE_PATH")
    pending_action_ttl_seconds: float = Field(default=300.0, alias="PENDING_ACTION_TTL_SECONDS")
    max_pending_actions_per_user: int = Field(default=10, alias="MAX_PENDING_ACTIONS_PER_USER")
    max_pending_actions_total: int = Field(default=10_000, alias="MAX_PENDING_ACTIONS_TOTAL")
    conversation_context_ttl_seconds: float = Field(
        default=1800.0, alias="CONVERSATION_CONTEXT_TTL_SECONDS"
    )
    cleanup_interval_seconds: float = Field(default=60.0, alias="CLEANUP_INTERVAL_SECONDS")
    request_timeout_seconds: float = Field(default=30.0, alias="REQUEST_TIMEOUT_SECONDS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def uses_llm_router(settings: Settings) -> bool:
    """Return True when routing should go through the LLM classifier.

    Falls back to keyword routing when no API key is configured so a missing
    key never takes the assistant down.
    """
    return settings.router_strategy == "llm" and bool(settings.openrouter_api_key)
