"""
Configuration settings for the Question Rotation Engine.

Uses Pydantic Settings to load environment variables for the record store,
the rotation window, text generation, and logging. Every field has a default
so a bare `STORE_BACKEND=memory` environment is enough for local runs.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("question_rotation", alias="DB_NAME")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(5, alias="DB_POOL_MAX_SIZE")
    store_backend: Literal["postgres", "memory"] = Field("postgres", alias="STORE_BACKEND")
    store_timeout_seconds: float = Field(3.0, alias="STORE_TIMEOUT_SECONDS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Rotation
    rotation_granularity: Literal["hour", "day"] = Field("day", alias="ROTATION_GRANULARITY")
    reference_timezone: str = Field("UTC", alias="REFERENCE_TIMEZONE")
    coordination_grace_seconds: float = Field(2.0, alias="COORDINATION_GRACE_SECONDS")
    pregenerate_enabled: bool = Field(True, alias="PREGENERATE_ENABLED")
    pregenerate_lead_minutes: int = Field(5, alias="PREGENERATE_LEAD_MINUTES")
    history_limit: int = Field(100, alias="HISTORY_LIMIT")

    # Generation
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    openai_model: str = Field("gpt-4o-mini", alias="OPENAI_MODEL")
    generation_temperature: float = Field(0.95, alias="GENERATION_TEMPERATURE")
    generation_max_tokens: int = Field(100, alias="GENERATION_MAX_TOKENS")
    generation_timeout_seconds: float = Field(5.0, alias="GENERATION_TIMEOUT_SECONDS")
    generation_deterministic_seed: bool = Field(False, alias="GENERATION_DETERMINISTIC_SEED")
    avoid_list_limit: int = Field(20, alias="AVOID_LIST_LIMIT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("reference_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown IANA timezone '{value}'") from exc
        return value

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
