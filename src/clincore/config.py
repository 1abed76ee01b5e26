from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+psycopg_async://clincore_user@127.0.0.1:5432/clincore"
    REPERTORY_DB_PATH: str = "data/repertory.db"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "ClinCore Remedy Engine"
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # None -> packaged remedy_engine_config_v1.json
    REMEDY_ENGINE_CONFIG_PATH: Optional[str] = None
    # restrict matching to one repertory (e.g. "Kent"); None -> all loaded
    REPERTORY_SOURCE: Optional[str] = None
    PERSIST_CASE_RECORDS: bool = True

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if "localhost" in v:
            raise ValueError(
                "DATABASE_URL must use 127.0.0.1 instead of localhost."
            )

        if "psycopg_async" not in v:
            raise ValueError(
                "Async engine requires 'postgresql+psycopg_async://' URL."
            )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return level


@lru_cache
def get_settings() -> Settings:
    return Settings()
