"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value fails fast with a clear error message.

Usage:
    from title_registry.config import get_settings
    settings = get_settings()
    print(settings.chain_rpc_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the title registry."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://registry:registry_dev"
        "@localhost:5432/title_registry"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Chain ---
    # With chain_simulate=True an in-process chain is used and no node is needed.
    chain_simulate: bool = True
    chain_rpc_url: str = "http://127.0.0.1:8545"
    chain_id: int = 1337
    chain_service_private_key: str = ""
    property_title_address: str = "0x" + "0" * 39 + "1"
    marketplace_address: str = "0x" + "0" * 39 + "2"
    chain_max_attempts: int = 4
    chain_backoff_multiplier: float = 0.5
    chain_backoff_min_seconds: float = 0.5
    chain_backoff_max_seconds: float = 8.0
    chain_confirmation_timeout_seconds: float = 120.0
    chain_poll_latency_seconds: float = 0.5

    # --- Document store (Pinata) ---
    document_store_simulate: bool = True
    pinata_api_key: str = ""
    pinata_secret_api_key: str = ""
    pinata_base_url: str = "https://api.pinata.cloud"
    pinata_timeout_seconds: float = 60.0
    document_max_bytes: int = 10 * 1024 * 1024  # 10 MB
    document_allowed_types: str = "application/pdf"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def document_allowed_type_list(self) -> list[str]:
        """Parse comma-separated content types into a list."""
        return [t.strip() for t in self.document_allowed_types.split(",") if t.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
