"""
Tests for the authorization broker: the IdP round trip, code redemption,
refresh token rotation and access token verification.
"""

import asyncio
import time
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest

from auth_broker.auth.idp import pkce_challenge
from auth_broker.auth.models import AuthorizationRequest, TokenPair
from auth_broker.core.exceptions import (
    IdPExchangeError,
    InvalidGrantError,
    InvalidTokenError,
)

CALLBACK_URL = "https://broker.example/callback"
IDP_SCOPES = ["openid", "profile", "email", "offline_access", "User.Read"]


def client_request(**overrides):
    fields = {
        "code_challenge": "abc",
        "redirect_uri": "https://app/cb",
        "state": "xyz",
        "scopes": ["mcp:read"],
    }
    fields.update(overrides)
    return AuthorizationRequest(**fields)


async def sign_in(broker, fake_idp, client_id="c1", **overrides):
    """Run authorize + callback and return the broker code from the redirect."""
    await broker.authorize(client_id, client_request(**overrides))
    idp_state = fake_idp.authorization_requests[-1]["state"]
    result = await broker.callback(code="idp123", state=idp_state)
    assert result.status_code == 302
    return parse_qs(urlsplit(result.location).query)["code"][0]


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_stores_pending_and_returns_idp_url(
        self, broker, fake_idp, memory_store
    ):
        url = await broker.authorize("c1", client_request())

        request = fake_idp.authorization_requests[0]
        assert url == f"https://idp.example/authorize?state={request['state']}"
        assert request["redirect_uri"] == CALLBACK_URL
        assert request["code_challenge_method"] == "S256"

        pending = await memory_store.get_pending_auth(request["state"])
        assert pending.client_id == "c1"
        assert pending.code_challenge == "abc"
        assert pending.redirect_uri == "https://app/cb"
        assert pending.state == "xyz"
        assert pending.scopes == ["mcp:read"]
        assert pending.idp_state == request["state"]
        assert request["code_challenge"] == pkce_challenge(pending.idp_code_verifier)

    @pytest.mark.asyncio
    async def test_client_scopes_are_not_forwarded(self, broker, fake_idp):
        await broker.authorize("c1", client_request(scopes=["anything"]))

        assert fake_idp.authorization_requests[0]["scopes"] == IDP_SCOPES

    @pytest.mark.asyncio
    async def test_each_attempt_gets_fresh_state(self, broker, fake_idp):
        await broker.authorize("c1", client_request())
        await broker.authorize("c1", client_request())

        first, second = fake_idp.authorization_requests
        assert first["state"] != second["state"]
        assert first["code_challenge"] != second["code_challenge"]


class TestCallback:
    @pytest.mark.asyncio
    async def test_success_redirects_to_client(self, broker, fake_idp, memory_store):
        await broker.authorize("c1", client_request())
        request = fake_idp.authorization_requests[0]

        result = await broker.callback(code="idp123", state=request["state"])

        assert result.status_code == 302
        parts = urlsplit(result.location)
        query = parse_qs(parts.query)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://app/cb"
        assert query["state"] == ["xyz"]
        assert len(query["code"]) == 1

        exchange = fake_idp.exchanges[0]
        assert exchange["code"] == "idp123"
        assert exchange["redirect_uri"] == CALLBACK_URL
        assert exchange["scopes"] == IDP_SCOPES
        assert pkce_challenge(exchange["code_verifier"]) == request["code_challenge"]

        code = query["code"][0]
        stored = memory_store._auth_codes[code]
        assert stored.idp_access_token == "IDPAT"
        assert stored.idp_refresh_token == "IDPRT"
        assert stored.user_id == "u1"
        assert stored.email == "a@b.com"
        assert stored.code_challenge == "abc"

    @pytest.mark.asyncio
    async def test_redirect_keeps_existing_query(self, broker, fake_idp):
        await broker.authorize(
            "c1", client_request(redirect_uri="https://app/cb?tenant=t1")
        )
        state = fake_idp.authorization_requests[0]["state"]

        result = await broker.callback(code="idp123", state=state)

        query = parse_qs(urlsplit(result.location).query)
        assert query["tenant"] == ["t1"]
        assert query["state"] == ["xyz"]

    @pytest.mark.asyncio
    async def test_no_client_state_omits_state(self, broker, fake_idp):
        await broker.authorize("c1", client_request(state=None))
        state = fake_idp.authorization_requests[0]["state"]

        result = await broker.callback(code="idp123", state=state)

        assert "state" not in parse_qs(urlsplit(result.location).query)

    @pytest.mark.asyncio
    async def test_idp_error(self, broker, fake_idp, memory_store):
        await broker.authorize("c1", client_request())
        state = fake_idp.authorization_requests[0]["state"]

        result = await broker.callback(
            code=None,
            state=state,
            error="access_denied",
            error_description="User cancelled",
        )

        assert result.status_code == 400
        assert result.message == "Authentication failed: User cancelled"
        assert fake_idp.exchanges == []
        assert state in memory_store._pending_auths

    @pytest.mark.asyncio
    async def test_idp_error_without_description(self, broker):
        result = await broker.callback(code=None, state=None, error="access_denied")

        assert result.message == "Authentication failed: access_denied"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,state", [(None, "s1"), ("idp123", None), ("", "")])
    async def test_missing_parameters(self, broker, fake_idp, code, state):
        result = await broker.callback(code=code, state=state)

        assert result.status_code == 400
        assert result.message == "Missing code or state parameter"
        assert fake_idp.exchanges == []

    @pytest.mark.asyncio
    async def test_unknown_state(self, broker, fake_idp):
        result = await broker.callback(code="idp123", state="forged")

        assert result.status_code == 400
        assert result.message == "Invalid or expired state parameter"
        assert fake_idp.exchanges == []

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, broker, fake_idp):
        await broker.authorize("c1", client_request())
        state = fake_idp.authorization_requests[0]["state"]

        first = await broker.callback(code="idp123", state=state)
        second = await broker.callback(code="idp123", state=state)

        assert first.status_code == 302
        assert second.status_code == 400
        assert len(fake_idp.exchanges) == 1

    @pytest.mark.asyncio
    async def test_expired_state(self, broker, fake_idp):
        with patch("auth_broker.store.base.time") as mock_time:
            mock_time.time.return_value = 1_700_000_000
            await broker.authorize("c1", client_request())
            state = fake_idp.authorization_requests[0]["state"]

            mock_time.time.return_value = 1_700_000_000 + 601
            result = await broker.callback(code="idp123", state=state)

        assert result.status_code == 400

    @pytest.mark.asyncio
    async def test_idp_exchange_failure(self, broker, fake_idp, memory_store):
        fake_idp.error = IdPExchangeError("invalid_grant")
        await broker.authorize("c1", client_request())
        state = fake_idp.authorization_requests[0]["state"]

        result = await broker.callback(code="idp123", state=state)

        assert result.status_code == 500
        assert result.message == "Failed to complete authentication"
        assert memory_store._auth_codes == {}
        assert memory_store._code_challenges == {}
        assert memory_store._pending_auths == {}


class TestAuthorizationCodeExchange:
    @pytest.mark.asyncio
    async def test_full_flow(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)

        pair = await broker.exchange_authorization_code("c1", code)

        assert pair.to_dict() == {
            "access_token": pair.access_token,
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": pair.refresh_token,
        }
        assert pair.access_token != pair.refresh_token

        info = await broker.verify_access_token(pair.access_token)
        assert info.user_id == "u1"
        assert info.email == "a@b.com"
        assert info.client_id == "c1"
        assert info.scopes == ["claudeai"]

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)
        await broker.exchange_authorization_code("c1", code)

        with pytest.raises(InvalidGrantError, match="Invalid or expired"):
            await broker.exchange_authorization_code("c1", code)

    @pytest.mark.asyncio
    async def test_unknown_code(self, broker):
        with pytest.raises(InvalidGrantError):
            await broker.exchange_authorization_code("c1", "made-up")

    @pytest.mark.asyncio
    async def test_code_of_another_client_is_burned(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp, client_id="c1")

        with pytest.raises(InvalidGrantError):
            await broker.exchange_authorization_code("c2", code)
        with pytest.raises(InvalidGrantError):
            await broker.exchange_authorization_code("c1", code)

    @pytest.mark.asyncio
    async def test_expired_code(self, broker, fake_idp):
        with patch("auth_broker.store.base.time") as mock_time:
            mock_time.time.return_value = 1_700_000_000
            code = await sign_in(broker, fake_idp)

            mock_time.time.return_value = 1_700_000_000 + 601
            with pytest.raises(InvalidGrantError):
                await broker.exchange_authorization_code("c1", code)

    @pytest.mark.asyncio
    async def test_challenge_lookup_until_exchange(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)

        challenge = await broker.challenge_for_authorization_code(code)
        assert challenge.code_challenge == "abc"
        assert challenge.client_id == "c1"
        assert challenge.redirect_uri == "https://app/cb"

        await broker.exchange_authorization_code("c1", code)

        assert await broker.challenge_for_authorization_code(code) is None

    @pytest.mark.asyncio
    async def test_code_verifier_is_checked_when_given(self, broker, fake_idp):
        verifier = "client-verifier-0123456789-0123456789-0123456789"
        code = await sign_in(broker, fake_idp, code_challenge=pkce_challenge(verifier))

        pair = await broker.exchange_authorization_code("c1", code, verifier)

        assert pair.access_token

    @pytest.mark.asyncio
    async def test_wrong_code_verifier(self, broker, fake_idp):
        code = await sign_in(
            broker, fake_idp, code_challenge=pkce_challenge("right-verifier")
        )

        with pytest.raises(InvalidGrantError):
            await broker.exchange_authorization_code("c1", code, "wrong-verifier")

    @pytest.mark.asyncio
    async def test_plain_code_challenge_method(self, broker, fake_idp, memory_store):
        code = await sign_in(
            broker,
            fake_idp,
            code_challenge="plain-verifier",
            code_challenge_method="plain",
        )
        assert memory_store._auth_codes[code].code_challenge_method == "plain"

        pair = await broker.exchange_authorization_code("c1", code, "plain-verifier")

        assert pair.access_token

    @pytest.mark.asyncio
    async def test_plain_code_challenge_method_mismatch(self, broker, fake_idp):
        code = await sign_in(
            broker,
            fake_idp,
            code_challenge="plain-verifier",
            code_challenge_method="plain",
        )

        with pytest.raises(InvalidGrantError):
            await broker.exchange_authorization_code("c1", code, "other-verifier")

    @pytest.mark.asyncio
    async def test_idp_refresh_token_is_kept(self, broker, fake_idp, memory_store):
        code = await sign_in(broker, fake_idp)

        pair = await broker.exchange_authorization_code("c1", code)

        stored = await memory_store.get_refresh_token(pair.refresh_token)
        assert stored.idp_refresh_token == "IDPRT"
        assert stored.scopes == ["claudeai"]


class TestRefreshTokenExchange:
    @pytest.mark.asyncio
    async def test_rotation(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)
        first = await broker.exchange_authorization_code("c1", code)

        second = await broker.exchange_refresh_token("c1", first.refresh_token)

        assert second.refresh_token != first.refresh_token
        assert second.access_token != first.access_token
        with pytest.raises(InvalidGrantError):
            await broker.exchange_refresh_token("c1", first.refresh_token)

        third = await broker.exchange_refresh_token("c1", second.refresh_token)
        assert third.access_token

    @pytest.mark.asyncio
    async def test_identity_is_preserved(self, broker, fake_idp, memory_store):
        code = await sign_in(broker, fake_idp)
        first = await broker.exchange_authorization_code("c1", code)

        second = await broker.exchange_refresh_token("c1", first.refresh_token)

        info = await broker.verify_access_token(second.access_token)
        assert (info.user_id, info.email, info.scopes) == ("u1", "a@b.com", ["claudeai"])
        stored = await memory_store.get_refresh_token(second.refresh_token)
        assert stored.idp_refresh_token == "IDPRT"

    @pytest.mark.asyncio
    async def test_old_access_token_stays_valid(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)
        first = await broker.exchange_authorization_code("c1", code)

        await broker.exchange_refresh_token("c1", first.refresh_token)

        assert await broker.verify_access_token(first.access_token)

    @pytest.mark.asyncio
    async def test_concurrent_rotation_issues_one_pair(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)
        pair = await broker.exchange_authorization_code("c1", code)

        results = await asyncio.gather(
            broker.exchange_refresh_token("c1", pair.refresh_token),
            broker.exchange_refresh_token("c1", pair.refresh_token),
            return_exceptions=True,
        )

        assert sum(isinstance(result, TokenPair) for result in results) == 1
        assert sum(isinstance(result, InvalidGrantError) for result in results) == 1

    @pytest.mark.asyncio
    async def test_unknown_refresh_token(self, broker):
        with pytest.raises(InvalidGrantError, match="refresh token"):
            await broker.exchange_refresh_token("c1", "made-up")

    @pytest.mark.asyncio
    async def test_refresh_token_of_another_client(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)
        pair = await broker.exchange_authorization_code("c1", code)

        with pytest.raises(InvalidGrantError):
            await broker.exchange_refresh_token("c2", pair.refresh_token)
        assert await broker.load_refresh_token(pair.refresh_token) is None


class TestAccessTokens:
    @pytest.mark.asyncio
    async def test_expiry_in_seconds(self, broker, fake_idp):
        with patch("auth_broker.store.base.time") as mock_time:
            mock_time.time.return_value = 1_700_000_000
            code = await sign_in(broker, fake_idp)
            pair = await broker.exchange_authorization_code("c1", code)

            info = await broker.verify_access_token(pair.access_token)

        assert info.expires_at == 1_700_000_000 + 3600

    @pytest.mark.asyncio
    async def test_expired_access_token(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)
        pair = await broker.exchange_authorization_code("c1", code)

        with patch("auth_broker.store.base.time") as mock_time:
            mock_time.time.return_value = time.time() + 3601
            with pytest.raises(InvalidTokenError):
                await broker.verify_access_token(pair.access_token)

    @pytest.mark.asyncio
    async def test_unknown_access_token(self, broker):
        with pytest.raises(InvalidTokenError):
            await broker.verify_access_token("made-up")


class TestRevocation:
    @pytest.mark.asyncio
    async def test_revoke_access_token(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)
        pair = await broker.exchange_authorization_code("c1", code)

        await broker.revoke_token(pair.access_token)

        with pytest.raises(InvalidTokenError):
            await broker.verify_access_token(pair.access_token)
        assert await broker.load_refresh_token(pair.refresh_token) is not None

    @pytest.mark.asyncio
    async def test_revoke_refresh_token(self, broker, fake_idp):
        code = await sign_in(broker, fake_idp)
        pair = await broker.exchange_authorization_code("c1", code)

        await broker.revoke_token(pair.refresh_token)

        with pytest.raises(InvalidGrantError):
            await broker.exchange_refresh_token("c1", pair.refresh_token)

    @pytest.mark.asyncio
    async def test_revoke_unknown_token(self, broker):
        await broker.revoke_token("made-up")
