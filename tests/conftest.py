"""
Shared pytest fixtures and configuration for all tests.

The identity provider is always faked; no test talks to Entra ID or Azure
Table Storage.
"""

import os
import sys

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from auth_broker.auth.broker import AuthorizationBroker
from auth_broker.auth.idp import IdPTokenResult
from auth_broker.config import reset_settings
from auth_broker.store import MemoryCredentialStore

CALLBACK_URL = "https://broker.example/callback"
IDP_SCOPES = ["openid", "profile", "email", "offline_access", "User.Read"]


class FakeIdPClient:
    """IdP client double recording every call."""

    def __init__(self, result: IdPTokenResult | None = None):
        self.result = result or IdPTokenResult(
            access_token="IDPAT",
            refresh_token="IDPRT",
            account_identifier="u1",
            account_username="a@b.com",
        )
        self.error: Exception | None = None
        self.authorization_requests: list[dict] = []
        self.exchanges: list[dict] = []
        self.closed = False

    def build_authorization_url(
        self,
        scopes,
        redirect_uri,
        state,
        code_challenge,
        code_challenge_method="S256",
    ):
        self.authorization_requests.append(
            {
                "scopes": scopes,
                "redirect_uri": redirect_uri,
                "state": state,
                "code_challenge": code_challenge,
                "code_challenge_method": code_challenge_method,
            }
        )
        return f"https://idp.example/authorize?state={state}"

    async def exchange_code_for_token(self, code, scopes, redirect_uri, code_verifier):
        self.exchanges.append(
            {
                "code": code,
                "scopes": scopes,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
            }
        )
        if self.error:
            raise self.error
        return self.result

    async def aclose(self):
        self.closed = True


@pytest.fixture(autouse=True)
def clean_settings():
    """Drop the settings singleton between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def memory_store():
    """In-memory store without the background sweep."""
    return MemoryCredentialStore()


@pytest.fixture
def fake_idp():
    return FakeIdPClient()


@pytest.fixture
def broker(memory_store, fake_idp):
    return AuthorizationBroker(
        memory_store,
        fake_idp,
        callback_url=CALLBACK_URL,
        idp_scopes=IDP_SCOPES,
    )
