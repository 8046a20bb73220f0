"""Core functionality for the auth broker."""

from .constants import (
    ACCESS_TOKEN_EXPIRES_IN,
    ACCESS_TOKEN_TTL_MS,
    AUTH_CODE_TTL_MS,
    ISSUED_SCOPES,
    PENDING_AUTH_TTL_MS,
    SWEEP_INTERVAL_SECONDS,
)
from .decorators import track_operation
from .exceptions import (
    AuthBrokerError,
    AuthorizationError,
    ConfigurationError,
    IdPExchangeError,
    InvalidGrantError,
    InvalidTokenError,
    StoreCorruptionError,
    StoreError,
)
from .logging import configure_logging, logger, request_id_ctx

__all__ = [
    # Core
    "configure_logging",
    "logger",
    "request_id_ctx",
    "track_operation",
    # Exceptions
    "AuthBrokerError",
    "AuthorizationError",
    "ConfigurationError",
    "IdPExchangeError",
    "InvalidGrantError",
    "InvalidTokenError",
    "StoreCorruptionError",
    "StoreError",
    # Constants - most commonly used
    "ACCESS_TOKEN_EXPIRES_IN",
    "ACCESS_TOKEN_TTL_MS",
    "AUTH_CODE_TTL_MS",
    "ISSUED_SCOPES",
    "PENDING_AUTH_TTL_MS",
    "SWEEP_INTERVAL_SECONDS",
]
