"""Custom exceptions for the auth broker.

A missing record is never an exception: store lookups return ``None``.
Exceptions are reserved for unusable credentials, upstream failures and
storage failures.
"""


# ========================================
# Base Exceptions
# ========================================


class AuthBrokerError(Exception):
    """Base exception for all auth broker errors."""


# ========================================
# Authorization Exceptions
# ========================================


class AuthorizationError(AuthBrokerError):
    """A credential presented by the caller cannot be used.

    The message is the same whether the credential expired, was already
    consumed, or never existed.
    """


class InvalidGrantError(AuthorizationError):
    """Authorization code or refresh token is invalid or expired."""


class InvalidTokenError(AuthorizationError):
    """Access token is invalid or expired."""


# ========================================
# External Service Exceptions
# ========================================


class ExternalServiceError(AuthBrokerError):
    """Base exception for external service errors."""


class IdPExchangeError(ExternalServiceError):
    """The identity provider rejected or failed the code exchange."""


# ========================================
# Storage Exceptions
# ========================================


class StoreError(AuthBrokerError):
    """The credential store is unreachable or failed an operation."""


class StoreCorruptionError(StoreError):
    """A stored payload could not be deserialized."""


# ========================================
# Validation Exceptions
# ========================================


class ConfigurationError(AuthBrokerError):
    """Configuration validation failed."""
