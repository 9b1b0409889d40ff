from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_log_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    if isinstance(level, int):
        return level
    return logging.INFO


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    log_level: str = Field(default="INFO", validation_alias="CHATSYNC_LOG_LEVEL")
    log_format: str = Field(default=DEFAULT_LOG_FORMAT, validation_alias="CHATSYNC_LOG_FORMAT")

    search_result_limit: int = Field(
        default=50,
        ge=1,
        le=500,
        validation_alias="CHATSYNC_SEARCH_LIMIT",
    )
    search_include_archived: bool = Field(
        default=False,
        validation_alias="CHATSYNC_SEARCH_INCLUDE_ARCHIVED",
    )
    search_local_fallback: bool = Field(
        default=True,
        validation_alias="CHATSYNC_SEARCH_LOCAL_FALLBACK",
    )

    held_delta_limit: int = Field(default=16, ge=1, validation_alias="CHATSYNC_HELD_DELTA_LIMIT")
    max_title_length: int = Field(default=255, ge=1, validation_alias="CHATSYNC_MAX_TITLE_LENGTH")

    @computed_field
    @property
    def log_level_value(self) -> int:
        return _resolve_log_level(self.log_level)


@lru_cache
def get_settings() -> Settings:
    return Settings()
