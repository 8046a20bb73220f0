"""OAuth authorization broker.

Brokers the authorization code + PKCE flow between MCP clients and an
upstream identity provider, issuing the broker's own rotating tokens.
"""

from auth_broker.auth.broker import AuthorizationBroker
from auth_broker.auth.idp import EntraIdClient, IdPClient, IdPTokenResult
from auth_broker.auth.models import (
    AccessTokenInfo,
    AuthorizationRequest,
    CallbackResult,
    TokenPair,
)
from auth_broker.auth.registry import ClientRegistry

__all__ = [
    "AccessTokenInfo",
    "AuthorizationBroker",
    "AuthorizationRequest",
    "CallbackResult",
    "ClientRegistry",
    "EntraIdClient",
    "IdPClient",
    "IdPTokenResult",
    "TokenPair",
]
