"""
Store configuration using Pydantic Settings.

Values come from ``BLOGSTORE_*`` environment variables or a ``.env`` file.
"""

import logging
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Connection and pool settings for the PostgreSQL store"""

    model_config = SettingsConfigDict(
        env_prefix="BLOGSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    dsn: str | None = Field(
        default=None,
        description="Full connection URL; when set it takes precedence over host/port/...",
    )
    host: str = Field(default="localhost")
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(default="postgres")
    user: str = Field(default="postgres")
    password: str = Field(default="postgres")

    min_pool_size: int = Field(default=1, ge=1)
    max_pool_size: int = Field(default=10, ge=1)
    command_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Per-statement timeout in seconds, enforced by the driver",
    )

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False, description="Emit logs as single-line JSON")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_pool_sizes(self) -> "StoreSettings":
        if self.max_pool_size < self.min_pool_size:
            raise ValueError("max_pool_size must be greater than or equal to min_pool_size")
        return self

    def pool_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``asyncpg.create_pool``"""
        kwargs: dict[str, Any] = {
            "min_size": self.min_pool_size,
            "max_size": self.max_pool_size,
            "command_timeout": self.command_timeout,
        }
        if self.dsn:
            kwargs["dsn"] = self.dsn
        else:
            kwargs.update(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
            )
        return kwargs
