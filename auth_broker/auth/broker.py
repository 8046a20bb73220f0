"""Authorization broker between OAuth clients and the upstream identity provider.

The broker never hands IdP tokens to clients. It runs the IdP's
authorization code + PKCE flow on the client's behalf, keeps the IdP tokens
in the credential store, and issues its own codes and rotating token pairs:

    authorize   client -> broker      pending authorization stored,
                                      user agent sent to the IdP
    callback    IdP -> broker         IdP code redeemed, broker code stored,
                                      user agent sent back to the client
    exchange    client -> broker      broker code consumed, token pair issued
    refresh     client -> broker      refresh token rotated, new pair issued
"""

import logging
import secrets
import uuid
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from auth_broker.core.constants import ISSUED_SCOPES, TOKEN_BYTES
from auth_broker.core.decorators import track_operation
from auth_broker.core.exceptions import (
    IdPExchangeError,
    InvalidGrantError,
    InvalidTokenError,
)
from auth_broker.store import (
    CredentialStore,
    PendingAuthorization,
    StoredAccessToken,
    StoredAuthCode,
    StoredCodeChallenge,
    StoredRefreshToken,
)

from .idp import IdPClient, pkce_challenge, verify_code_verifier
from .models import AccessTokenInfo, AuthorizationRequest, CallbackResult, TokenPair

logger = logging.getLogger(__name__)

INVALID_CODE_MESSAGE = "Invalid or expired authorization code"
INVALID_REFRESH_MESSAGE = "Invalid or expired refresh token"
INVALID_ACCESS_MESSAGE = "Invalid or expired access token"


def _new_secret() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def _with_query(url: str, params: dict[str, str]) -> str:
    """Set query parameters on a URL, keeping the ones already present."""
    parts = urlsplit(url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in params
    ]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class AuthorizationBroker:
    """
    OAuth authorization broker.

    Storage-agnostic: every record goes through the injected
    ``CredentialStore``. There is no in-process locking; single-use records
    rely on the store's read-once semantics.
    """

    # PKCE is verified by the token endpoint against
    # challenge_for_authorization_code() before exchange.
    skip_local_pkce_validation = False

    def __init__(
        self,
        store: CredentialStore,
        idp_client: IdPClient,
        *,
        callback_url: str,
        idp_scopes: list[str],
        issued_scopes: list[str] | None = None,
    ) -> None:
        """
        Initialize broker.

        Args:
            store: Credential store shared by all requests
            idp_client: Upstream identity provider client
            callback_url: Broker URL the IdP redirects back to
            idp_scopes: Fixed scope set requested from the IdP
            issued_scopes: Scopes attached to issued token pairs
        """
        self.store = store
        self.idp_client = idp_client
        self.callback_url = callback_url
        self.idp_scopes = list(idp_scopes)
        self.issued_scopes = list(issued_scopes or ISSUED_SCOPES)

    # ========== Authorization Flow ==========

    @track_operation("authorize")
    async def authorize(self, client_id: str, request: AuthorizationRequest) -> str:
        """
        Start an authorization attempt.

        The client's requested scopes are recorded but not forwarded: the
        IdP always sees the broker's own scope set.

        Returns:
            IdP authorization URL to redirect the user agent to
        """
        idp_code_verifier = _new_secret()
        idp_state = str(uuid.uuid4())

        await self.store.store_pending_auth(
            idp_state,
            PendingAuthorization(
                client_id=client_id,
                code_challenge=request.code_challenge,
                code_challenge_method=request.code_challenge_method,
                redirect_uri=request.redirect_uri,
                scopes=list(request.scopes),
                state=request.state,
                idp_state=idp_state,
                idp_code_verifier=idp_code_verifier,
            ),
        )
        logger.info("Authorization started for client %s", client_id)

        return self.idp_client.build_authorization_url(
            scopes=self.idp_scopes,
            redirect_uri=self.callback_url,
            state=idp_state,
            code_challenge=pkce_challenge(idp_code_verifier),
            code_challenge_method="S256",
        )

    @track_operation("callback")
    async def callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> CallbackResult:
        """
        Handle the IdP redirect after user sign-in.

        Failures are reported as 4xx/5xx results. Store failures propagate.
        """
        if error:
            logger.warning("IdP returned error: %s", error)
            return CallbackResult(
                status_code=400,
                message=f"Authentication failed: {error_description or error}",
            )

        if not code or not state:
            return CallbackResult(
                status_code=400, message="Missing code or state parameter"
            )

        pending = await self.store.get_pending_auth(state)
        if pending is None:
            return CallbackResult(
                status_code=400, message="Invalid or expired state parameter"
            )

        try:
            idp_tokens = await self.idp_client.exchange_code_for_token(
                code=code,
                scopes=self.idp_scopes,
                redirect_uri=self.callback_url,
                code_verifier=pending.idp_code_verifier,
            )
        except IdPExchangeError as e:
            logger.error("IdP token exchange failed: %s", e)
            return CallbackResult(
                status_code=500, message="Failed to complete authentication"
            )

        server_code = _new_secret()

        await self.store.store_code_challenge(
            server_code,
            StoredCodeChallenge(
                client_id=pending.client_id,
                code_challenge=pending.code_challenge,
                redirect_uri=pending.redirect_uri,
                scopes=pending.scopes,
            ),
        )
        await self.store.store_auth_code(
            server_code,
            StoredAuthCode(
                client_id=pending.client_id,
                code_challenge=pending.code_challenge,
                code_challenge_method=pending.code_challenge_method,
                idp_access_token=idp_tokens.access_token,
                idp_refresh_token=idp_tokens.refresh_token,
                redirect_uri=pending.redirect_uri,
                user_id=idp_tokens.account_identifier,
                email=idp_tokens.account_username,
            ),
        )
        logger.info(
            "IdP sign-in completed for client %s (user %s)",
            pending.client_id,
            idp_tokens.account_identifier,
        )

        params = {"code": server_code}
        if pending.state is not None:
            params["state"] = pending.state
        return CallbackResult(
            status_code=302, location=_with_query(pending.redirect_uri, params)
        )

    async def challenge_for_authorization_code(
        self, code: str
    ) -> StoredCodeChallenge | None:
        """PKCE challenge bound to a broker code, without consuming the code."""
        return await self.store.get_code_challenge(code)

    # ========== Token Exchange ==========

    @track_operation("exchange_authorization_code")
    async def exchange_authorization_code(
        self,
        client_id: str,
        code: str,
        code_verifier: str | None = None,
    ) -> TokenPair:
        """
        Redeem a broker authorization code for a token pair.

        The code is consumed by the lookup itself, so it cannot be redeemed
        twice even if a later step fails.

        Args:
            client_id: Authenticated client
            code: Broker authorization code
            code_verifier: PKCE verifier; checked here when given, for callers
                that did not verify it against the stored challenge

        Raises:
            InvalidGrantError: If the code is unknown, expired, used or mismatched
        """
        stored = await self.store.get_auth_code(code)
        if stored is None:
            raise InvalidGrantError(INVALID_CODE_MESSAGE)

        await self.store.delete_code_challenge(code)

        if stored.client_id != client_id:
            logger.warning("Authorization code presented by a different client")
            raise InvalidGrantError(INVALID_CODE_MESSAGE)

        if code_verifier is not None and not verify_code_verifier(
            code_verifier, stored.code_challenge, stored.code_challenge_method
        ):
            raise InvalidGrantError(INVALID_CODE_MESSAGE)

        grant = StoredRefreshToken(
            user_id=stored.user_id,
            email=stored.email,
            client_id=stored.client_id,
            scopes=self.issued_scopes,
            idp_refresh_token=stored.idp_refresh_token,
        )
        pair = await self._issue_token_pair(grant)
        logger.info("Issued tokens for client %s", client_id)
        return pair

    @track_operation("exchange_refresh_token")
    async def exchange_refresh_token(
        self, client_id: str, refresh_token: str
    ) -> TokenPair:
        """
        Rotate a refresh token.

        The old token is consumed by the lookup itself, so of two concurrent
        rotations at most one succeeds. If the response never reaches the
        client, the old token is still gone.

        Raises:
            InvalidGrantError: If the refresh token is unknown, rotated or mismatched
        """
        stored = await self.store.take_refresh_token(refresh_token)
        if stored is None:
            raise InvalidGrantError(INVALID_REFRESH_MESSAGE)

        if stored.client_id != client_id:
            logger.warning("Refresh token presented by a different client")
            raise InvalidGrantError(INVALID_REFRESH_MESSAGE)

        pair = await self._issue_token_pair(stored)
        logger.info("Refreshed tokens for client %s", client_id)
        return pair

    async def _issue_token_pair(self, grant: StoredRefreshToken) -> TokenPair:
        # Two independent writes; a failure on the second leaves a valid
        # access token without a refresh token.
        access_token = _new_secret()
        refresh_token = _new_secret()

        await self.store.store_access_token(
            access_token, StoredAccessToken(**grant.model_dump())
        )
        await self.store.store_refresh_token(
            refresh_token, StoredRefreshToken(**grant.model_dump())
        )

        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def load_refresh_token(self, refresh_token: str) -> StoredRefreshToken | None:
        """Look up a refresh token without rotating it."""
        return await self.store.get_refresh_token(refresh_token)

    # ========== Token Validation ==========

    async def verify_access_token(self, token: str) -> AccessTokenInfo:
        """
        Resolve an access token to its identity and scopes.

        Raises:
            InvalidTokenError: If the token is unknown or expired
        """
        stored = await self.store.get_access_token(token)
        if stored is None:
            raise InvalidTokenError(INVALID_ACCESS_MESSAGE)

        return AccessTokenInfo(
            token=token,
            client_id=stored.client_id,
            user_id=stored.user_id,
            email=stored.email,
            scopes=stored.scopes,
            expires_at=stored.expires_at // 1000,
        )

    # ========== Revocation ==========

    @track_operation("revoke_token")
    async def revoke_token(self, token: str) -> None:
        """Revoke an access or refresh token. Unknown tokens are ignored."""
        await self.store.delete_access_token(token)
        await self.store.delete_refresh_token(token)
