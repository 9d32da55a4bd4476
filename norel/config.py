"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    telegram_bot_token: str = Field(..., alias="TELEGRAM_BOT_TOKEN")
    telegram_api_base_url: str = Field(default="https://api.telegram.org", alias="TELEGRAM_API_BASE_URL")
    telegram_poll_timeout_seconds: int = Field(default=30, alias="TELEGRAM_POLL_TIMEOUT_SECONDS")

    openai_api_key: str = Field(default="sk-placeholder", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="http://localhost:1234/v1", alias="OPENAI_BASE_URL")
    llm_model: str = Field(default="qwen/qwen3-next-80b-a3b-instruct", alias="LLM_MODEL")
    llm_max_tokens: int = Field(default=4000, alias="LLM_MAX_TOKENS")
    request_timeout_seconds: float = Field(default=120.0, alias="REQUEST_TIMEOUT_SECONDS")

    database_path: Path = Field(default=Path("norel.db"), alias="DATABASE_PATH")
    system_prompt: str | None = Field(default=None, alias="SYSTEM_PROMPT")
    # Comma-separated names that count as addressing the bot in group chats.
    bot_names: str = Field(default="norel", alias="BOT_NAMES")
    history_window_messages: int = Field(default=15, alias="HISTORY_WINDOW_MESSAGES")

    context_hard_char_ceiling: int = Field(default=40_000, alias="CONTEXT_HARD_CHAR_CEILING")
    context_soft_summarize_threshold: int = Field(default=60_000, alias="CONTEXT_SOFT_SUMMARIZE_THRESHOLD")
    context_keep_recent: int = Field(default=10, alias="CONTEXT_KEEP_RECENT")
    summary_refresh_chars: int = Field(default=15_000, alias="SUMMARY_REFRESH_CHARS")
    summary_refresh_chance: float = Field(default=0.2, alias="SUMMARY_REFRESH_CHANCE")

    max_tool_depth: int = Field(default=5, alias="MAX_TOOL_DEPTH")
    tool_result_max_chars: int = Field(default=10_000, alias="TOOL_RESULT_MAX_CHARS")
    min_reminder_seconds: int = Field(default=3600, alias="MIN_REMINDER_SECONDS")

    passive_batch_window_seconds: float = Field(default=30.0, alias="PASSIVE_BATCH_WINDOW_SECONDS")
    passive_reply_chance: float = Field(default=0.08, ge=0.0, le=1.0, alias="PASSIVE_REPLY_CHANCE")
    idle_min_seconds: float = Field(default=2 * 3600, alias="IDLE_MIN_SECONDS")
    idle_jitter_seconds: float = Field(default=4 * 3600, alias="IDLE_JITTER_SECONDS")
    reminder_poll_seconds: float = Field(default=30.0, alias="REMINDER_POLL_SECONDS")

    jina_api_key: str = Field(default="", alias="JINA_API_KEY")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def bot_names(settings: Settings) -> frozenset[str]:
    """Return the lowercased names that address the bot.

    Configured via the BOT_NAMES env var as a comma-separated list.
    """
    return frozenset(n.strip().lower() for n in settings.bot_names.split(",") if n.strip())
