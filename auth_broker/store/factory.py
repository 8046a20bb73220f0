"""
Factory for creating credential store instances.
The backend is selected by configuration presence.
"""

import logging

from auth_broker.config import Settings

from .base import CredentialStore
from .memory import MemoryCredentialStore
from .table import TableCredentialStore

logger = logging.getLogger(__name__)


def create_credential_store(settings: Settings) -> CredentialStore:
    """
    Create the credential store for the current configuration.

    Table Storage is used when a connection string is configured, the
    in-memory store otherwise.

    Args:
        settings: Application settings

    Returns:
        Credential store instance (not yet initialized)
    """
    if settings.has_table_storage_config():
        logger.info("Credential store: Azure Table Storage")
        return TableCredentialStore(
            connection_string=settings.azure_storage_connection_string,
            table_prefix=settings.auth_table_prefix,
        )

    logger.info(
        "Credential store: in-memory "
        "(set AZURE_STORAGE_CONNECTION_STRING for persistence)"
    )
    return MemoryCredentialStore(sweep_interval=settings.store_sweep_interval_seconds)


async def create_and_initialize_store(settings: Settings) -> CredentialStore:
    """
    Create and initialize the credential store.

    Args:
        settings: Application settings

    Returns:
        Initialized credential store
    """
    store = create_credential_store(settings)
    await store.initialize()
    return store
