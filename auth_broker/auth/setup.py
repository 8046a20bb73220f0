"""
Wiring of the auth broker into a FastMCP server.

Builds the credential store, IdP client, registry, broker and provider
from settings, and registers the broker's own routes with FastMCP.

Architecture:
- Route handlers live in auth.routes; this module only registers them
- Closure adapters inject the broker / components dependency
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mcp.server.auth.settings import ClientRegistrationOptions, RevocationOptions

from auth_broker.config import Settings
from auth_broker.core import logger
from auth_broker.store import CredentialStore, create_credential_store

from .broker import AuthorizationBroker
from .idp import EntraIdClient, IdPClient
from .provider import BrokerOAuthProvider
from .registry import ClientRegistry

if TYPE_CHECKING:
    from fastmcp import FastMCP


@dataclass
class AuthComponents:
    """Auth objects sharing one credential store, with their lifecycle."""

    store: CredentialStore
    idp_client: IdPClient
    registry: ClientRegistry
    broker: AuthorizationBroker
    provider: BrokerOAuthProvider
    ready: bool = False

    async def startup(self) -> None:
        """Initialize the credential store."""
        await self.store.initialize()
        self.ready = True
        logger.info("✓ Auth broker ready")

    async def shutdown(self) -> None:
        """Stop the store and close network clients."""
        self.ready = False
        await self.store.close()
        await self.idp_client.aclose()


def build_auth_components(
    settings: Settings,
    *,
    store: CredentialStore | None = None,
    idp_client: IdPClient | None = None,
) -> AuthComponents:
    """
    Build the auth broker from settings.

    Args:
        settings: Application settings
        store: Credential store override (selected from settings when omitted)
        idp_client: IdP client override (Entra ID from settings when omitted)

    Returns:
        Components; call ``startup()`` before serving requests

    Raises:
        ConfigurationError: If the IdP credentials are missing
    """
    store = store or create_credential_store(settings)
    idp_client = idp_client or EntraIdClient.from_settings(settings)

    registry = ClientRegistry(store)
    broker = AuthorizationBroker(
        store,
        idp_client,
        callback_url=settings.callback_url,
        idp_scopes=settings.get_idp_scopes_list(),
    )
    provider = BrokerOAuthProvider(
        broker=broker,
        registry=registry,
        base_url=settings.base_url or "",
        issuer_url=settings.base_url,
        client_registration_options=ClientRegistrationOptions(enabled=True),
        revocation_options=RevocationOptions(enabled=True),
    )

    logger.info("Auth broker configured")
    logger.info(f"  - Base URL: {settings.base_url}")
    logger.info(f"  - IdP callback: {settings.callback_url}")
    logger.info(f"  - IdP scopes: {', '.join(broker.idp_scopes)}")

    return AuthComponents(
        store=store,
        idp_client=idp_client,
        registry=registry,
        broker=broker,
        provider=provider,
    )


def setup_auth_routes(mcp: "FastMCP", components: AuthComponents) -> None:
    """
    Register the broker's routes with a FastMCP server.

    Registers:
    - /callback (IdP redirect target)
    - /health (store readiness)

    The OAuth endpoints themselves are served by ``components.provider``.

    Args:
        mcp: FastMCP server instance
        components: Auth components built by ``build_auth_components``

    Example:
        >>> from fastmcp import FastMCP
        >>> components = build_auth_components(get_settings())
        >>> mcp = FastMCP("Auth Broker", auth=components.provider)
        >>> setup_auth_routes(mcp, components)
    """
    from auth_broker.auth.routes import health, idp_callback

    @mcp.custom_route("/callback", methods=["GET"])
    async def _idp_callback(request):
        """IdP redirect target."""
        return await idp_callback(request, components.broker)

    @mcp.custom_route("/health", methods=["GET"])
    async def _health(request):
        """Health check."""
        return await health(request, components)

    logger.info("✓ Auth broker routes registered (2 routes)")
