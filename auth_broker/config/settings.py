"""Configuration settings for the auth broker using Pydantic Settings.

This module provides type-safe configuration management with automatic validation,
environment variable loading, and documentation generation.
"""

import logging
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Central configuration management with Pydantic validation.

    All settings are loaded from environment variables with automatic type conversion
    and validation. Default values are provided for non-critical settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
        validate_default=True,
        populate_by_name=True,
    )

    # ========================================
    # Debug Settings
    # ========================================
    debug: bool = Field(
        default=False,
        alias="MCP_DEBUG",
        description="Enable debug mode with verbose logging",
    )

    # ========================================
    # Server Settings
    # ========================================
    host: str = Field(
        default="0.0.0.0",
        description="Server host address",
    )

    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Server port number",
    )

    base_url: str | None = Field(
        default=None,
        alias="MCP_SERVER_BASE_URL",
        description="Public base URL of the broker (IdP redirects to {base_url}/callback)",
    )

    # ========================================
    # Identity Provider (Microsoft Entra ID)
    # ========================================
    entra_tenant_id: str | None = Field(
        default=None,
        description="Entra ID tenant (directory) ID",
    )

    entra_client_id: str | None = Field(
        default=None,
        description="Application (client) ID registered with Entra ID",
    )

    entra_client_secret: str | None = Field(
        default=None,
        description="Client secret for the Entra ID application",
    )

    entra_authority_host: str = Field(
        default="https://login.microsoftonline.com",
        description="Entra ID authority host",
    )

    idp_scopes: str = Field(
        default="openid,profile,email,offline_access,User.Read",
        description="Comma-separated scopes the broker requests from the IdP",
    )

    idp_timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=120.0,
        description="Timeout in seconds for IdP token requests",
    )

    # ========================================
    # Credential Store Settings
    # ========================================
    azure_storage_connection_string: str | None = Field(
        default=None,
        description="Azure Table Storage connection string (enables the durable store)",
    )

    auth_table_prefix: str = Field(
        default="",
        description="Prefix prepended to every durable store table name",
    )

    store_sweep_interval_seconds: int = Field(
        default=300,
        ge=1,
        le=86400,
        description="Interval between expired-entry sweeps of the in-memory store",
    )

    # ========================================
    # Validators
    # ========================================
    @field_validator("base_url", mode="before")
    @classmethod
    def set_base_url(cls, v: str | None, info: Any) -> str:
        """Set base URL default from port if not provided."""
        if v:
            return str(v).rstrip("/")
        port = info.data.get("port", 3000)
        return f"http://localhost:{port}"

    # ========================================
    # Helper Methods
    # ========================================
    @property
    def callback_url(self) -> str:
        """Redirect URI registered with the IdP."""
        return f"{self.base_url}/callback"

    def has_idp_config(self) -> bool:
        """Check if the Entra ID application credentials are configured."""
        return all(
            [self.entra_tenant_id, self.entra_client_id, self.entra_client_secret]
        )

    def has_table_storage_config(self) -> bool:
        """Check if the durable store is configured."""
        return bool(self.azure_storage_connection_string)

    def get_idp_scopes_list(self) -> list[str]:
        """Get IdP scopes as a list."""
        return [s.strip() for s in self.idp_scopes.split(",") if s.strip()]

    def to_dict(self) -> dict[str, Any]:
        """Export settings as a dictionary (safe version without secrets)."""
        return {
            "debug": self.debug,
            "host": self.host,
            "port": self.port,
            "base_url": self.base_url,
            "has_idp": self.has_idp_config(),
            "entra_authority_host": self.entra_authority_host,
            "idp_scopes": self.get_idp_scopes_list(),
            "idp_timeout": self.idp_timeout,
            "store": "table" if self.has_table_storage_config() else "memory",
            "auth_table_prefix": self.auth_table_prefix,
            "store_sweep_interval_seconds": self.store_sweep_interval_seconds,
        }


# Singleton pattern with proper typing
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
        logger.info("Settings initialized from environment")
        logger.debug(
            "Credential store: %s",
            "table" if _settings_instance.has_table_storage_config() else "memory",
        )
        if not _settings_instance.has_idp_config():
            logger.warning(
                "ENTRA_TENANT_ID, ENTRA_CLIENT_ID or ENTRA_CLIENT_SECRET is missing. "
                "The authorization flow will be unavailable.",
            )
    return _settings_instance


def reset_settings() -> None:
    """Reset settings instance (useful for testing)."""
    global _settings_instance
    _settings_instance = None
