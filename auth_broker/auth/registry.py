"""Dynamic client registration on top of the credential store."""

import logging
from typing import Any

from auth_broker.store import CredentialStore, RegisteredClient

logger = logging.getLogger(__name__)


class ClientRegistry:
    """Append-only registry of OAuth clients. There is no update or delete."""

    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    async def register_client(
        self,
        metadata: dict[str, Any],
        *,
        client_id: str | None = None,
    ) -> RegisteredClient:
        """Persist a registration and return it with its id and issue time."""
        registered = await self.store.register_client(metadata, client_id=client_id)
        logger.info(
            "Registered client %s (%s)",
            registered.client_id,
            metadata.get("client_name", "unnamed"),
        )
        return registered

    async def get_client(self, client_id: str) -> RegisteredClient | None:
        return await self.store.get_client(client_id)
