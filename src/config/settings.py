# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for transfer tuning, backend selection and logging.
"""

from __future__ import annotations

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Transfer engine ===
    transfer_concurrency_limit: int = 2
    transfer_rename_suffix: str = "_"
    transfer_max_rename_attempts: int = 1000
    transfer_chunk_size: int = 64 * 1024
    transfer_mode: Literal["copy", "move"] = "copy"

    # === Backends ===
    source_backend: Literal["local", "memory"] = "local"
    destination_backend: Literal["local", "memory"] = "local"

    # === Report ===
    report_format: Literal["text", "json"] = "text"

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: str = ""
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate transfer limits and naming rules."""
        errors: list[str] = []

        if self.transfer_concurrency_limit < 1:
            errors.append("TRANSFER_CONCURRENCY_LIMIT must be >= 1")

        if self.transfer_max_rename_attempts < 1:
            errors.append("TRANSFER_MAX_RENAME_ATTEMPTS must be >= 1")

        if self.transfer_chunk_size <= 0:
            errors.append("TRANSFER_CHUNK_SIZE must be > 0")

        if not self.transfer_rename_suffix:
            errors.append("TRANSFER_RENAME_SUFFIX must not be empty")
        elif any(sep in self.transfer_rename_suffix for sep in ("/", "\\")):
            errors.append("TRANSFER_RENAME_SUFFIX must not contain path separators")

        if self.log_retention < 0:
            errors.append("LOG_RETENTION must be >= 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-batch config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
