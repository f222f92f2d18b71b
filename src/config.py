"""
config.py

Application settings, read from environment variables or a `.env` file.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from service import WEEKDAYS


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # ============================================================================
    # SERVER
    # ============================================================================

    APP_NAME: str = Field(default="Rapportino API", description="Title shown in the API docs")
    ENVIRONMENT: str = Field(default="development", description="development / staging / production")
    LOG_LEVEL: str = Field(default="INFO", description="Root logging level")
    CORS_ORIGINS: str = Field(default="*", description="Comma-separated allowed origins")

    # ============================================================================
    # STORAGE
    # ============================================================================

    STORAGE_BACKEND: str = Field(default="memory", description="memory | sqlite")
    DATABASE_PATH: str = Field(default="rapportino.db", description="SQLite file path")
    STORAGE_QUOTA_BYTES: int = Field(
        default=5 * 1024 * 1024,
        ge=0,
        description="Byte quota of the in-memory key-value store",
    )

    # ============================================================================
    # DASHBOARD
    # ============================================================================

    WEEK_START: str = Field(default="monday", description="First day of the week")
    LATEST_REPORTS_LIMIT: int = Field(default=5, ge=0)

    @field_validator("STORAGE_BACKEND")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"memory", "sqlite"}:
            raise ValueError("STORAGE_BACKEND must be one of: ['memory', 'sqlite']")
        return v

    @field_validator("WEEK_START")
    @classmethod
    def validate_week_start(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in WEEKDAYS:
            raise ValueError(f"WEEK_START must be one of: {list(WEEKDAYS)}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if not isinstance(logging.getLevelName(v), int):
            raise ValueError(f"Unknown LOG_LEVEL {v!r}")
        return v

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
