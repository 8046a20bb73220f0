"""Credential store package.

Supports two backends behind one protocol: in-memory and Azure Table Storage.
"""

from .base import CredentialStore, current_time_ms, is_expired
from .factory import create_and_initialize_store, create_credential_store
from .memory import MemoryCredentialStore
from .models import (
    PendingAuthorization,
    RegisteredClient,
    StoredAccessToken,
    StoredAuthCode,
    StoredCodeChallenge,
    StoredRefreshToken,
)
from .table import TableCredentialStore

__all__ = [
    "CredentialStore",
    "MemoryCredentialStore",
    "PendingAuthorization",
    "RegisteredClient",
    "StoredAccessToken",
    "StoredAuthCode",
    "StoredCodeChallenge",
    "StoredRefreshToken",
    "TableCredentialStore",
    "create_and_initialize_store",
    "create_credential_store",
    "current_time_ms",
    "is_expired",
]
