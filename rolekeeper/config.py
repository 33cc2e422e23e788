"""Centralized configuration for RoleKeeper.

Uses Pydantic BaseSettings with environment variable loading and validation.
All RK_* environment variables are validated at import time.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage
    db_path: str = Field(default="rolekeeper.db", description="SQLite database path")

    # Resolution
    max_role_depth: int = Field(
        default=32,
        ge=1,
        le=1024,
        description="Maximum number of roles in a parent chain (the role itself included)",
    )

    # Audit
    audit_enabled: bool = Field(default=True, description="Persist audit events for mutations")

    # Logging
    log_format: str = Field(default="text", description="Log format: text or json")
    log_level: str = Field(default="INFO", description="Python log level")

    model_config = {"env_prefix": "RK_", "case_sensitive": False, "extra": "ignore"}

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"RK_LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        import logging

        v = v.upper()
        if not isinstance(getattr(logging, v, None), int):
            msg = f"RK_LOG_LEVEL must be a valid Python log level, got '{v}'"
            raise ValueError(msg)
        return v


# Singleton, validated at import time.
settings = Settings()
