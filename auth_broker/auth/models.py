"""Request and response models exchanged between the broker and the transport layer."""

from pydantic import BaseModel, Field

from auth_broker.core.constants import (
    ACCESS_TOKEN_EXPIRES_IN,
    DEFAULT_CODE_CHALLENGE_METHOD,
    TOKEN_TYPE,
)


class AuthorizationRequest(BaseModel):
    """Client authorization request, accepted as given."""

    code_challenge: str
    redirect_uri: str
    state: str | None = None
    scopes: list[str] = Field(default_factory=list)
    code_challenge_method: str = DEFAULT_CODE_CHALLENGE_METHOD


class CallbackResult(BaseModel):
    """Outcome of the IdP callback: a redirect or an error page."""

    status_code: int
    location: str | None = None
    message: str | None = None

    @property
    def is_redirect(self) -> bool:
        return self.location is not None


class TokenPair(BaseModel):
    """Token endpoint response."""

    access_token: str
    token_type: str = TOKEN_TYPE
    expires_in: int = ACCESS_TOKEN_EXPIRES_IN
    refresh_token: str

    def to_dict(self) -> dict[str, str | int]:
        return self.model_dump()


class AccessTokenInfo(BaseModel):
    """Identity and authorization attached to a verified access token."""

    token: str
    client_id: str
    user_id: str
    email: str
    scopes: list[str] = Field(default_factory=list)
    expires_at: int  # Unix seconds
