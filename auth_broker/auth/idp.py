"""
Upstream identity provider client.

The broker talks to the IdP through the ``IdPClient`` protocol: one call to
build the browser redirect, one call to redeem the IdP's authorization code.
``EntraIdClient`` implements it against the Microsoft identity platform v2.0
endpoints.
"""

import base64
import hashlib
import hmac
import logging
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt
from pydantic import BaseModel

from auth_broker.config import Settings
from auth_broker.core.constants import DEFAULT_CODE_CHALLENGE_METHOD
from auth_broker.core.exceptions import ConfigurationError, IdPExchangeError

logger = logging.getLogger(__name__)


def pkce_challenge(code_verifier: str) -> str:
    """Compute the S256 PKCE challenge for a verifier."""
    return (
        base64.urlsafe_b64encode(hashlib.sha256(code_verifier.encode()).digest())
        .decode()
        .rstrip("=")
    )


def verify_code_verifier(
    code_verifier: str,
    code_challenge: str,
    code_challenge_method: str = DEFAULT_CODE_CHALLENGE_METHOD,
) -> bool:
    """Check a PKCE verifier against its challenge (S256 or plain)."""
    if code_challenge_method == "S256":
        expected = pkce_challenge(code_verifier)
    elif code_challenge_method == "plain":
        expected = code_verifier
    else:
        return False
    return hmac.compare_digest(expected.encode(), code_challenge.encode())


class IdPTokenResult(BaseModel):
    """Outcome of a successful IdP code exchange."""

    access_token: str
    refresh_token: str | None = None
    account_identifier: str
    account_username: str


@runtime_checkable
class IdPClient(Protocol):
    """Interface of the upstream identity provider."""

    def build_authorization_url(
        self,
        scopes: list[str],
        redirect_uri: str,
        state: str,
        code_challenge: str,
        code_challenge_method: str = DEFAULT_CODE_CHALLENGE_METHOD,
    ) -> str:
        """Build the URL the user agent is redirected to for sign-in."""
        ...

    async def exchange_code_for_token(
        self,
        code: str,
        scopes: list[str],
        redirect_uri: str,
        code_verifier: str,
    ) -> IdPTokenResult:
        """
        Redeem an IdP authorization code.

        Raises:
            IdPExchangeError: If the IdP rejects or fails the exchange
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


class EntraIdClient:
    """
    Microsoft Entra ID client for the authorization code + PKCE flow.

    The account identity is read from the ``id_token`` returned with the
    access token. The token is received directly from the token endpoint
    over TLS, so its claims are read without signature verification.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        authority_host: str = "https://login.microsoftonline.com",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize Entra ID client.

        Args:
            tenant_id: Directory (tenant) ID
            client_id: Application (client) ID
            client_secret: Application client secret
            authority_host: Authority host (sovereign clouds use a different one)
            timeout: Token request timeout in seconds
            http_client: Pre-built HTTP client (tests inject a mock transport)
        """
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.authority = f"{authority_host.rstrip('/')}/{tenant_id}"
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EntraIdClient":
        """Create a client from application settings."""
        if not settings.has_idp_config():
            msg = (
                "ENTRA_TENANT_ID, ENTRA_CLIENT_ID and ENTRA_CLIENT_SECRET "
                "must be set in environment variables"
            )
            raise ConfigurationError(msg)
        return cls(
            tenant_id=settings.entra_tenant_id or "",
            client_id=settings.entra_client_id or "",
            client_secret=settings.entra_client_secret or "",
            authority_host=settings.entra_authority_host,
            timeout=settings.idp_timeout,
        )

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/token"

    def build_authorization_url(
        self,
        scopes: list[str],
        redirect_uri: str,
        state: str,
        code_challenge: str,
        code_challenge_method: str = DEFAULT_CODE_CHALLENGE_METHOD,
    ) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "response_mode": "query",
            "scope": " ".join(scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": code_challenge_method,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    async def exchange_code_for_token(
        self,
        code: str,
        scopes: list[str],
        redirect_uri: str,
        code_verifier: str,
    ) -> IdPTokenResult:
        data = {
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
            "scope": " ".join(scopes),
        }

        try:
            response = await self._http_client.post(
                self.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            error = _error_code(e.response)
            msg = f"IdP rejected the code exchange ({e.response.status_code}): {error}"
            raise IdPExchangeError(msg) from e
        except httpx.HTTPError as e:
            msg = f"IdP token request failed: {e}"
            raise IdPExchangeError(msg) from e
        except ValueError as e:
            msg = "IdP token response is not valid JSON"
            raise IdPExchangeError(msg) from e

        if not isinstance(payload, dict):
            msg = "IdP token response is not a JSON object"
            raise IdPExchangeError(msg)

        access_token = payload.get("access_token")
        if not access_token:
            msg = "IdP token response has no access_token"
            raise IdPExchangeError(msg)

        claims = self._id_token_claims(payload.get("id_token"))
        if not payload.get("refresh_token"):
            logger.debug("IdP issued no refresh token (offline_access not granted?)")

        return IdPTokenResult(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or None,
            account_identifier=claims.get("oid") or claims.get("sub") or "unknown",
            account_username=claims.get("preferred_username")
            or claims.get("email")
            or "",
        )

    @staticmethod
    def _id_token_claims(id_token: str | None) -> dict[str, Any]:
        if not id_token:
            return {}
        try:
            return jwt.get_unverified_claims(id_token)
        except JWTError as e:
            msg = "IdP returned a malformed id_token"
            raise IdPExchangeError(msg) from e

    async def aclose(self) -> None:
        await self._http_client.aclose()


def _error_code(response: httpx.Response) -> str:
    """Extract the OAuth error code from an error response."""
    try:
        body = response.json()
    except ValueError:
        return "unknown_error"
    if isinstance(body, dict):
        return str(body.get("error") or "unknown_error")
    return "unknown_error"
