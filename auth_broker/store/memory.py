"""
In-memory implementation of the CredentialStore protocol.

Suitable for single-instance, ephemeral deployments: every record is lost
when the process exits.
"""

import asyncio
import contextlib
import logging
import uuid
from typing import Any

from auth_broker.core.constants import (
    ACCESS_TOKEN_TTL_MS,
    AUTH_CODE_TTL_MS,
    PENDING_AUTH_TTL_MS,
    SWEEP_INTERVAL_SECONDS,
)

from .base import current_time_ms, is_expired
from .models import (
    PendingAuthorization,
    RegisteredClient,
    StoredAccessToken,
    StoredAuthCode,
    StoredCodeChallenge,
    StoredRefreshToken,
)

logger = logging.getLogger(__name__)


class MemoryCredentialStore:
    """
    In-memory implementation of the CredentialStore protocol.

    Single-use reads pop the entry from its dict, so two coroutines redeeming
    the same key cannot both observe it. Expiry is checked on every read; a
    background task started by ``initialize()`` periodically drops expired
    entries to reclaim memory.
    """

    def __init__(self, sweep_interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        """Initialize empty tables"""
        self.sweep_interval = sweep_interval

        self._clients: dict[str, RegisteredClient] = {}
        # Pending authorizations carry no expiry field of their own
        self._pending_auths: dict[str, tuple[PendingAuthorization, int]] = {}
        self._auth_codes: dict[str, StoredAuthCode] = {}
        self._code_challenges: dict[str, StoredCodeChallenge] = {}
        self._access_tokens: dict[str, StoredAccessToken] = {}
        self._refresh_tokens: dict[str, StoredRefreshToken] = {}

        self._sweep_task: asyncio.Task[None] | None = None

    async def initialize(self) -> None:
        """Start the periodic sweep if it is not already running"""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(
            self._sweep_loop(), name="credential-store-sweep"
        )
        logger.info(
            "In-memory credential store ready (sweep every %ss)", self.sweep_interval
        )

    async def close(self) -> None:
        """Cancel the periodic sweep"""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweep_task
        self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug("Swept %d expired credential records", removed)

    def sweep(self, now: int | None = None) -> int:
        """
        Remove expired entries.

        Only entries whose expiry is already in the past are removed, so a
        sweep never invalidates a live credential.

        Args:
            now: Reference time in epoch ms (defaults to the current time)

        Returns:
            Number of entries removed
        """
        if now is None:
            now = current_time_ms()

        removed = 0
        for table in (self._auth_codes, self._code_challenges, self._access_tokens):
            expired = [key for key, val in table.items() if is_expired(val.expires_at, now)]
            for key in expired:
                table.pop(key, None)
            removed += len(expired)

        expired = [
            key
            for key, (_, expires_at) in self._pending_auths.items()
            if is_expired(expires_at, now)
        ]
        for key in expired:
            self._pending_auths.pop(key, None)
        removed += len(expired)

        return removed

    # ========== Client Registration ==========

    async def get_client(self, client_id: str) -> RegisteredClient | None:
        return self._clients.get(client_id)

    async def register_client(
        self,
        metadata: dict[str, Any],
        *,
        client_id: str | None = None,
    ) -> RegisteredClient:
        registered = RegisteredClient(
            **{
                **metadata,
                "client_id": client_id or str(uuid.uuid4()),
                "client_id_issued_at": current_time_ms() // 1000,
            }
        )
        self._clients[registered.client_id] = registered
        return registered

    # ========== Pending Authorizations ==========

    async def store_pending_auth(
        self, idp_state: str, record: PendingAuthorization
    ) -> None:
        self._pending_auths[idp_state] = (record, current_time_ms() + PENDING_AUTH_TTL_MS)

    async def get_pending_auth(self, idp_state: str) -> PendingAuthorization | None:
        entry = self._pending_auths.pop(idp_state, None)
        if entry is None:
            return None
        record, expires_at = entry
        if is_expired(expires_at):
            return None
        return record

    # ========== Authorization Codes ==========

    async def store_auth_code(self, code: str, record: StoredAuthCode) -> None:
        self._auth_codes[code] = record.model_copy(
            update={"expires_at": current_time_ms() + AUTH_CODE_TTL_MS}
        )

    async def get_auth_code(self, code: str) -> StoredAuthCode | None:
        stored = self._auth_codes.pop(code, None)  # single use
        if stored is None or is_expired(stored.expires_at):
            return None
        return stored

    # ========== Code Challenges ==========

    async def store_code_challenge(
        self, code: str, record: StoredCodeChallenge
    ) -> None:
        self._code_challenges[code] = record.model_copy(
            update={"expires_at": current_time_ms() + AUTH_CODE_TTL_MS}
        )

    async def get_code_challenge(self, code: str) -> StoredCodeChallenge | None:
        stored = self._code_challenges.get(code)
        if stored is None:
            return None
        if is_expired(stored.expires_at):
            self._code_challenges.pop(code, None)
            return None
        return stored

    async def delete_code_challenge(self, code: str) -> None:
        self._code_challenges.pop(code, None)

    # ========== Access Tokens ==========

    async def store_access_token(self, token: str, record: StoredAccessToken) -> None:
        self._access_tokens[token] = record.model_copy(
            update={"expires_at": current_time_ms() + ACCESS_TOKEN_TTL_MS}
        )

    async def get_access_token(self, token: str) -> StoredAccessToken | None:
        stored = self._access_tokens.get(token)
        if stored is None:
            return None
        if is_expired(stored.expires_at):
            self._access_tokens.pop(token, None)
            return None
        return stored

    async def delete_access_token(self, token: str) -> None:
        self._access_tokens.pop(token, None)

    # ========== Refresh Tokens ==========

    async def store_refresh_token(
        self, token: str, record: StoredRefreshToken
    ) -> None:
        self._refresh_tokens[token] = record

    async def get_refresh_token(self, token: str) -> StoredRefreshToken | None:
        return self._refresh_tokens.get(token)

    async def take_refresh_token(self, token: str) -> StoredRefreshToken | None:
        return self._refresh_tokens.pop(token, None)

    async def delete_refresh_token(self, token: str) -> None:
        self._refresh_tokens.pop(token, None)
