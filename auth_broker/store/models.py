"""Pydantic models for credential store records.

These models define the structure of every record the broker persists:
registered clients, pending authorizations, authorization codes, code
challenges, access tokens and refresh tokens.

Records other than ``RegisteredClient`` serialize with camelCase keys so the
durable payload matches the ``expiresAt`` column naming.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth_broker.core.constants import DEFAULT_CODE_CHALLENGE_METHOD


class StoredRecord(BaseModel):
    """Base for camelCase-serialized store records."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisteredClient(BaseModel):
    """Dynamically registered OAuth client.

    Registration metadata (redirect URIs, grant types, client name, ...) is
    opaque to the broker and kept verbatim as extra fields.
    """

    model_config = ConfigDict(extra="allow")

    client_id: str
    client_id_issued_at: int


class PendingAuthorization(StoredRecord):
    """Authorization attempt waiting for the IdP callback, keyed by ``idp_state``."""

    client_id: str
    code_challenge: str
    code_challenge_method: str = DEFAULT_CODE_CHALLENGE_METHOD
    redirect_uri: str
    scopes: list[str] = Field(default_factory=list)
    state: str | None = None
    idp_state: str
    idp_code_verifier: str


class StoredAuthCode(StoredRecord):
    """Broker-issued single-use authorization code."""

    client_id: str
    code_challenge: str
    code_challenge_method: str = DEFAULT_CODE_CHALLENGE_METHOD
    idp_access_token: str
    idp_refresh_token: str | None = None
    redirect_uri: str
    user_id: str
    email: str
    expires_at: int = 0  # epoch ms, stamped by the store


class StoredCodeChallenge(StoredRecord):
    """PKCE challenge for a broker code, read by the token endpoint before exchange."""

    client_id: str
    code_challenge: str
    redirect_uri: str
    scopes: list[str] = Field(default_factory=list)
    expires_at: int = 0  # epoch ms, stamped by the store


class StoredRefreshToken(StoredRecord):
    """Refresh token grant. Never expires; removed by rotation or revocation."""

    user_id: str
    email: str
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    idp_refresh_token: str | None = None


class StoredAccessToken(StoredRefreshToken):
    """Access token grant."""

    expires_at: int = 0  # epoch ms, stamped by the store
