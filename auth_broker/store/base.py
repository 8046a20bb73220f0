"""
Base protocol/interface for credential store implementations.
All store backends must implement this protocol.
"""

import time
from typing import Any, Protocol, runtime_checkable

from .models import (
    PendingAuthorization,
    RegisteredClient,
    StoredAccessToken,
    StoredAuthCode,
    StoredCodeChallenge,
    StoredRefreshToken,
)


def current_time_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def is_expired(expires_at: int | float, now: int | None = None) -> bool:
    """Whether an ``expires_at`` epoch-ms timestamp is in the past."""
    if now is None:
        now = current_time_ms()
    return expires_at < now


@runtime_checkable
class CredentialStore(Protocol):
    """
    Protocol defining the storage contract of the broker.
    Both the in-memory and the table storage backends implement this interface.

    A missing, expired or already consumed record is returned as ``None``.
    Only storage failures raise, as ``StoreError``.
    """

    async def initialize(self) -> None:
        """
        Prepare backing resources (background sweep, tables).
        This should be called once when the application starts and is idempotent.
        """
        ...

    async def close(self) -> None:
        """Release backing resources."""
        ...

    async def get_client(self, client_id: str) -> RegisteredClient | None:
        """Look up a registered client by id."""
        ...

    async def register_client(
        self,
        metadata: dict[str, Any],
        *,
        client_id: str | None = None,
    ) -> RegisteredClient:
        """
        Persist a new client registration.

        Args:
            metadata: Registration metadata, stored verbatim
            client_id: Id already assigned by the registration endpoint;
                a fresh UUID is generated when omitted

        Returns:
            The stored record including ``client_id`` and ``client_id_issued_at``
        """
        ...

    async def store_pending_auth(
        self, idp_state: str, record: PendingAuthorization
    ) -> None:
        """Persist a pending authorization for ten minutes."""
        ...

    async def get_pending_auth(self, idp_state: str) -> PendingAuthorization | None:
        """Read and delete a pending authorization (read-once)."""
        ...

    async def store_auth_code(self, code: str, record: StoredAuthCode) -> None:
        """Persist an authorization code; the store stamps ``expires_at``."""
        ...

    async def get_auth_code(self, code: str) -> StoredAuthCode | None:
        """Read and delete an authorization code (read-once)."""
        ...

    async def store_code_challenge(
        self, code: str, record: StoredCodeChallenge
    ) -> None:
        """Persist the PKCE challenge of an authorization code."""
        ...

    async def get_code_challenge(self, code: str) -> StoredCodeChallenge | None:
        """Read the PKCE challenge of an authorization code (not consumed)."""
        ...

    async def delete_code_challenge(self, code: str) -> None:
        """Delete a code challenge. Best-effort."""
        ...

    async def store_access_token(self, token: str, record: StoredAccessToken) -> None:
        """Persist an access token for one hour; the store stamps ``expires_at``."""
        ...

    async def get_access_token(self, token: str) -> StoredAccessToken | None:
        """Read an access token; expired tokens are deleted and reported absent."""
        ...

    async def delete_access_token(self, token: str) -> None:
        """Delete an access token."""
        ...

    async def store_refresh_token(
        self, token: str, record: StoredRefreshToken
    ) -> None:
        """Persist a refresh token."""
        ...

    async def get_refresh_token(self, token: str) -> StoredRefreshToken | None:
        """Read a refresh token (not consumed)."""
        ...

    async def take_refresh_token(self, token: str) -> StoredRefreshToken | None:
        """
        Read and delete a refresh token (read-once).

        Of two concurrent calls for the same token at most one returns the
        record.
        """
        ...

    async def delete_refresh_token(self, token: str) -> None:
        """Delete a refresh token."""
        ...
