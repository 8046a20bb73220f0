"""FastMCP OAuth provider backed by the authorization broker.

The MCP SDK serves /authorize, /token, /register, /revoke and the
well-known metadata; this provider maps each of its calls onto the broker
and the client registry.
"""

import logging

from fastmcp.server.auth import OAuthProvider
from fastmcp.server.auth.auth import AccessToken
from mcp.server.auth.provider import (
    AuthorizationCode,
    AuthorizationParams,
    RefreshToken,
    TokenError,
)
from mcp.server.auth.settings import ClientRegistrationOptions, RevocationOptions
from mcp.shared.auth import OAuthClientInformationFull, OAuthToken
from pydantic import AnyUrl

from auth_broker.core.exceptions import InvalidGrantError, InvalidTokenError

from .broker import AuthorizationBroker
from .models import AuthorizationRequest
from .registry import ClientRegistry

logger = logging.getLogger(__name__)


class BrokerOAuthProvider(OAuthProvider):
    """OAuth Provider that brokers sign-in to an upstream identity provider.

    Client-facing codes and tokens are minted by the broker; IdP tokens
    stay in the credential store.
    """

    def __init__(
        self,
        *,
        broker: AuthorizationBroker,
        registry: ClientRegistry,
        base_url: str,
        issuer_url: str | None = None,
        service_documentation_url: str | None = None,
        client_registration_options: ClientRegistrationOptions | None = None,
        revocation_options: RevocationOptions | None = None,
        required_scopes: list[str] | None = None,
    ) -> None:
        """Initialize OAuth provider.

        Args:
            broker: Authorization broker handling the flow
            registry: Registry of dynamically registered clients
            base_url: Base URL for OAuth endpoints
            issuer_url: OAuth issuer URL (defaults to base_url)
            service_documentation_url: URL to service documentation
            client_registration_options: DCR configuration
            revocation_options: Token revocation configuration
            required_scopes: Scopes required for all requests
        """
        super().__init__(
            base_url=base_url,
            issuer_url=issuer_url,
            service_documentation_url=service_documentation_url,
            client_registration_options=client_registration_options,
            revocation_options=revocation_options,
            required_scopes=required_scopes,
        )
        self.broker = broker
        self.registry = registry

    # ========== Client Management ==========

    async def get_client(self, client_id: str) -> OAuthClientInformationFull | None:
        """Retrieve client from the registry."""
        stored = await self.registry.get_client(client_id)
        if not stored:
            return None
        return OAuthClientInformationFull.model_validate(stored.model_dump())

    async def register_client(self, client_info: OAuthClientInformationFull) -> None:
        """Store client registration under the id assigned by the registration endpoint."""
        if not client_info.client_id:
            msg = "client_id is required"
            raise ValueError(msg)

        metadata = client_info.model_dump(
            mode="json",
            exclude_none=True,
            exclude={"client_id", "client_id_issued_at"},
        )
        await self.registry.register_client(metadata, client_id=client_info.client_id)

    # ========== Authorization Flow ==========

    async def authorize(
        self,
        client: OAuthClientInformationFull,
        params: AuthorizationParams,
    ) -> str:
        """Record the attempt and return the IdP sign-in URL."""
        request = AuthorizationRequest(
            code_challenge=params.code_challenge,
            redirect_uri=str(params.redirect_uri),
            state=params.state,
            scopes=list(params.scopes) if params.scopes else [],
        )
        return await self.broker.authorize(client.client_id or "", request)

    async def load_authorization_code(
        self,
        client: OAuthClientInformationFull,
        authorization_code: str,
    ) -> AuthorizationCode | None:
        """Load the PKCE challenge of a broker code without consuming the code."""
        challenge = await self.broker.challenge_for_authorization_code(
            authorization_code
        )
        if not challenge:
            return None

        # Verify client
        if challenge.client_id != client.client_id:
            return None

        return AuthorizationCode(
            code=authorization_code,
            client_id=challenge.client_id,
            redirect_uri=AnyUrl(challenge.redirect_uri),
            redirect_uri_provided_explicitly=True,
            scopes=challenge.scopes,
            expires_at=challenge.expires_at / 1000,
            code_challenge=challenge.code_challenge,
        )

    # ========== Token Exchange ==========

    async def exchange_authorization_code(
        self,
        client: OAuthClientInformationFull,
        authorization_code: AuthorizationCode,
    ) -> OAuthToken:
        """Exchange a broker code for a token pair."""
        try:
            pair = await self.broker.exchange_authorization_code(
                client.client_id or "", authorization_code.code
            )
        except InvalidGrantError as e:
            raise TokenError("invalid_grant", str(e)) from e
        return OAuthToken(**pair.to_dict())

    # ========== Refresh Token ==========

    async def load_refresh_token(
        self,
        client: OAuthClientInformationFull,
        refresh_token: str,
    ) -> RefreshToken | None:
        """Load refresh token without rotating it."""
        stored = await self.broker.load_refresh_token(refresh_token)
        if not stored:
            return None

        # Verify client
        if stored.client_id != client.client_id:
            return None

        return RefreshToken(
            token=refresh_token,
            client_id=stored.client_id,
            scopes=stored.scopes,
            expires_at=None,
        )

    async def exchange_refresh_token(
        self,
        client: OAuthClientInformationFull,
        refresh_token: RefreshToken,
        scopes: list[str],
    ) -> OAuthToken:
        """Rotate the refresh token. Requested scopes are not narrowed."""
        try:
            pair = await self.broker.exchange_refresh_token(
                client.client_id or "", refresh_token.token
            )
        except InvalidGrantError as e:
            raise TokenError("invalid_grant", str(e)) from e
        return OAuthToken(**pair.to_dict())

    # ========== Token Validation ==========

    async def load_access_token(self, token: str) -> AccessToken | None:
        """Load and validate access token."""
        try:
            info = await self.broker.verify_access_token(token)
        except InvalidTokenError:
            return None

        return AccessToken(
            token=info.token,
            client_id=info.client_id,
            scopes=info.scopes,
            expires_at=info.expires_at,
            claims={"sub": info.user_id, "email": info.email},
        )

    # ========== Revocation ==========

    async def revoke_token(self, token: AccessToken | RefreshToken) -> None:
        """Revoke a token."""
        await self.broker.revoke_token(token.token)
        logger.info("Revoked token for client: %s", token.client_id)
