"""
Azure Table Storage implementation of the CredentialStore protocol.

Persists OAuth state across container restarts and scale-to-zero. Each
record kind lives in its own table; rows are keyed by a per-kind partition
key and the record identifier, and carry the JSON payload in ``data`` plus
an ``expiresAt`` epoch-ms column where the record expires.

Table Storage has no per-item TTL, so expiry is always re-checked here on
read.
"""

import asyncio
import logging
import uuid
from typing import Any, TypeVar

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.data.tables import UpdateMode
from azure.data.tables.aio import TableClient, TableServiceClient
from pydantic import BaseModel, ValidationError

from auth_broker.core.constants import (
    ACCESS_TOKEN_TTL_MS,
    ACCESS_TOKENS_TABLE,
    AUTH_CODE_TTL_MS,
    AUTH_CODES_TABLE,
    CHALLENGE_PARTITION,
    CLIENT_PARTITION,
    CLIENTS_TABLE,
    CODE_CHALLENGES_TABLE,
    CODE_PARTITION,
    PENDING_AUTH_TTL_MS,
    PENDING_AUTHS_TABLE,
    PENDING_PARTITION,
    REFRESH_PARTITION,
    REFRESH_TOKENS_TABLE,
    TOKEN_PARTITION,
)
from auth_broker.core.exceptions import (
    ConfigurationError,
    StoreCorruptionError,
    StoreError,
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

ModelT = TypeVar("ModelT", bound=BaseModel)

# HTTP statuses meaning another reader got to a single-use row first
_LOST_CLAIM_STATUSES = (404, 412)


class TableCredentialStore:
    """
    Table Storage implementation of the CredentialStore protocol.

    Single-use rows (pending authorizations, authorization codes, refresh
    tokens being rotated) are consumed with a conditional claim: the row is
    marked ``claimed`` under its ETag before deletion, so of two concurrent
    readers at most one observes the live record.
    """

    def __init__(
        self,
        connection_string: str | None = None,
        table_prefix: str = "",
        service_client: TableServiceClient | None = None,
    ) -> None:
        """
        Initialize table clients.

        Args:
            connection_string: Azure Storage connection string
            table_prefix: Alphanumeric prefix prepended to every table name
            service_client: Pre-built service client (takes precedence)
        """
        if service_client is None:
            if not connection_string:
                msg = "AZURE_STORAGE_CONNECTION_STRING must be set for the table store"
                raise ConfigurationError(msg)
            service_client = TableServiceClient.from_connection_string(
                connection_string
            )

        self.service_client = service_client
        self.table_prefix = table_prefix

        self.clients = self._table(CLIENTS_TABLE)
        self.pending_auths = self._table(PENDING_AUTHS_TABLE)
        self.auth_codes = self._table(AUTH_CODES_TABLE)
        self.access_tokens = self._table(ACCESS_TOKENS_TABLE)
        self.code_challenges = self._table(CODE_CHALLENGES_TABLE)
        self.refresh_tokens = self._table(REFRESH_TOKENS_TABLE)

    def _table(self, name: str) -> TableClient:
        return self.service_client.get_table_client(f"{self.table_prefix}{name}")

    @property
    def tables(self) -> list[TableClient]:
        return [
            self.clients,
            self.pending_auths,
            self.auth_codes,
            self.access_tokens,
            self.code_challenges,
            self.refresh_tokens,
        ]

    async def initialize(self) -> None:
        """Create all tables if they don't exist"""
        await asyncio.gather(*(self._create_table(table) for table in self.tables))
        logger.info(
            "Table credential store ready (%d tables, prefix=%r)",
            len(self.tables),
            self.table_prefix,
        )

    async def _create_table(self, table: TableClient) -> None:
        try:
            await table.create_table()
            logger.info("Created table %s", table.table_name)
        except ResourceExistsError:
            logger.debug("Table %s already exists", table.table_name)
        except AzureError as e:
            msg = f"Failed to create table {table.table_name}: {e}"
            raise StoreError(msg) from e

    async def close(self) -> None:
        """Close the underlying HTTP pipeline"""
        await self.service_client.close()

    # ========== Row Helpers ==========

    @staticmethod
    def _entity(
        partition_key: str,
        row_key: str,
        data: str,
        expires_at: int | None = None,
    ) -> dict[str, Any]:
        entity: dict[str, Any] = {
            "PartitionKey": partition_key,
            "RowKey": row_key,
            "data": data,
        }
        if expires_at is not None:
            # Stored as a double; epoch milliseconds are exact well past 2100
            entity["expiresAt"] = float(expires_at)
        return entity

    @staticmethod
    def _row_expired(entity: Any) -> bool:
        expires_at = entity.get("expiresAt")
        return expires_at is not None and is_expired(expires_at)

    @staticmethod
    def _parse(entity: Any, model: type[ModelT]) -> ModelT:
        try:
            return model.model_validate_json(entity["data"])
        except (ValidationError, KeyError, TypeError) as e:
            msg = f"Corrupt {model.__name__} payload"
            raise StoreCorruptionError(msg) from e

    async def _upsert(self, table: TableClient, entity: dict[str, Any]) -> None:
        try:
            await table.upsert_entity(entity)
        except AzureError as e:
            msg = f"Failed to write to {table.table_name}: {e}"
            raise StoreError(msg) from e

    async def _get(
        self, table: TableClient, partition_key: str, row_key: str
    ) -> Any | None:
        try:
            return await table.get_entity(partition_key=partition_key, row_key=row_key)
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            msg = f"Failed to read from {table.table_name}: {e}"
            raise StoreError(msg) from e

    async def _delete(
        self, table: TableClient, partition_key: str, row_key: str
    ) -> None:
        try:
            await table.delete_entity(partition_key=partition_key, row_key=row_key)
        except ResourceNotFoundError:
            return
        except AzureError as e:
            msg = f"Failed to delete from {table.table_name}: {e}"
            raise StoreError(msg) from e

    async def _delete_quietly(
        self, table: TableClient, partition_key: str, row_key: str
    ) -> None:
        """Delete used on cleanup paths, where a failure does not affect correctness."""
        try:
            await self._delete(table, partition_key, row_key)
        except StoreError as e:
            logger.warning("Cleanup delete failed: %s", e)

    async def _claim(self, table: TableClient, entity: Any) -> bool:
        """
        Mark a single-use row as claimed, conditional on its ETag.

        Returns:
            True if this caller claimed the row, False if another reader did
        """
        try:
            await table.update_entity(
                {
                    "PartitionKey": entity["PartitionKey"],
                    "RowKey": entity["RowKey"],
                    "claimed": True,
                },
                mode=UpdateMode.MERGE,
                etag=entity.metadata["etag"],
                match_condition=MatchConditions.IfNotModified,
            )
        except (ResourceModifiedError, ResourceNotFoundError):
            return False
        except HttpResponseError as e:
            if e.status_code in _LOST_CLAIM_STATUSES:
                return False
            msg = f"Failed to claim row in {table.table_name}: {e}"
            raise StoreError(msg) from e
        except AzureError as e:
            msg = f"Failed to claim row in {table.table_name}: {e}"
            raise StoreError(msg) from e
        return True

    async def _consume(
        self, table: TableClient, partition_key: str, row_key: str
    ) -> Any | None:
        """Read a single-use row and delete it; None if absent or already claimed."""
        entity = await self._get(table, partition_key, row_key)
        if entity is None or entity.get("claimed"):
            return None
        if not await self._claim(table, entity):
            return None
        await self._delete_quietly(table, partition_key, row_key)
        return entity

    # ========== Client Registration ==========

    async def get_client(self, client_id: str) -> RegisteredClient | None:
        entity = await self._get(self.clients, CLIENT_PARTITION, client_id)
        if entity is None:
            return None
        return self._parse(entity, RegisteredClient)

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
        await self._upsert(
            self.clients,
            self._entity(
                CLIENT_PARTITION, registered.client_id, registered.model_dump_json()
            ),
        )
        return registered

    # ========== Pending Authorizations ==========

    async def store_pending_auth(
        self, idp_state: str, record: PendingAuthorization
    ) -> None:
        await self._upsert(
            self.pending_auths,
            self._entity(
                PENDING_PARTITION,
                idp_state,
                record.model_dump_json(by_alias=True),
                expires_at=current_time_ms() + PENDING_AUTH_TTL_MS,
            ),
        )

    async def get_pending_auth(self, idp_state: str) -> PendingAuthorization | None:
        entity = await self._consume(self.pending_auths, PENDING_PARTITION, idp_state)
        if entity is None or self._row_expired(entity):
            return None
        return self._parse(entity, PendingAuthorization)

    # ========== Authorization Codes ==========

    async def store_auth_code(self, code: str, record: StoredAuthCode) -> None:
        expires_at = current_time_ms() + AUTH_CODE_TTL_MS
        stamped = record.model_copy(update={"expires_at": expires_at})
        await self._upsert(
            self.auth_codes,
            self._entity(
                CODE_PARTITION,
                code,
                stamped.model_dump_json(by_alias=True),
                expires_at=expires_at,
            ),
        )

    async def get_auth_code(self, code: str) -> StoredAuthCode | None:
        entity = await self._consume(self.auth_codes, CODE_PARTITION, code)
        if entity is None:
            return None
        stored = self._parse(entity, StoredAuthCode)
        if is_expired(stored.expires_at):
            return None
        return stored

    # ========== Code Challenges ==========

    async def store_code_challenge(
        self, code: str, record: StoredCodeChallenge
    ) -> None:
        expires_at = current_time_ms() + AUTH_CODE_TTL_MS
        stamped = record.model_copy(update={"expires_at": expires_at})
        await self._upsert(
            self.code_challenges,
            self._entity(
                CHALLENGE_PARTITION,
                code,
                stamped.model_dump_json(by_alias=True),
                expires_at=expires_at,
            ),
        )

    async def get_code_challenge(self, code: str) -> StoredCodeChallenge | None:
        entity = await self._get(self.code_challenges, CHALLENGE_PARTITION, code)
        if entity is None:
            return None
        stored = self._parse(entity, StoredCodeChallenge)
        if is_expired(stored.expires_at):
            await self._delete_quietly(self.code_challenges, CHALLENGE_PARTITION, code)
            return None
        return stored

    async def delete_code_challenge(self, code: str) -> None:
        await self._delete_quietly(self.code_challenges, CHALLENGE_PARTITION, code)

    # ========== Access Tokens ==========

    async def store_access_token(self, token: str, record: StoredAccessToken) -> None:
        expires_at = current_time_ms() + ACCESS_TOKEN_TTL_MS
        stamped = record.model_copy(update={"expires_at": expires_at})
        await self._upsert(
            self.access_tokens,
            self._entity(
                TOKEN_PARTITION,
                token,
                stamped.model_dump_json(by_alias=True),
                expires_at=expires_at,
            ),
        )

    async def get_access_token(self, token: str) -> StoredAccessToken | None:
        entity = await self._get(self.access_tokens, TOKEN_PARTITION, token)
        if entity is None:
            return None
        stored = self._parse(entity, StoredAccessToken)
        if is_expired(stored.expires_at):
            await self._delete_quietly(self.access_tokens, TOKEN_PARTITION, token)
            return None
        return stored

    async def delete_access_token(self, token: str) -> None:
        await self._delete(self.access_tokens, TOKEN_PARTITION, token)

    # ========== Refresh Tokens ==========

    async def store_refresh_token(
        self, token: str, record: StoredRefreshToken
    ) -> None:
        await self._upsert(
            self.refresh_tokens,
            self._entity(
                REFRESH_PARTITION, token, record.model_dump_json(by_alias=True)
            ),
        )

    async def get_refresh_token(self, token: str) -> StoredRefreshToken | None:
        entity = await self._get(self.refresh_tokens, REFRESH_PARTITION, token)
        if entity is None or entity.get("claimed"):
            return None
        return self._parse(entity, StoredRefreshToken)

    async def take_refresh_token(self, token: str) -> StoredRefreshToken | None:
        entity = await self._consume(self.refresh_tokens, REFRESH_PARTITION, token)
        if entity is None:
            return None
        return self._parse(entity, StoredRefreshToken)

    async def delete_refresh_token(self, token: str) -> None:
        await self._delete(self.refresh_tokens, REFRESH_PARTITION, token)

