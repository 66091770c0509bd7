# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import base64
import hashlib
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from coreason_oidc.config import ClientConfig
from coreason_oidc.exceptions import ConfigError, StateMismatchError, TokenExchangeError
from coreason_oidc.models import RequestContext
from coreason_oidc.oidc_client import OIDCClient, generate_pkce_pair
from coreason_oidc.transport import SafeHTTPTransport

from conftest import CLIENT_ID, FakeIdP

REQUEST = RequestContext(scheme="https", host="app.example.com")


@pytest.fixture
def oidc_client(config: ClientConfig, http_client: httpx.AsyncClient) -> OIDCClient:
    return OIDCClient(config, http_client)


def query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def test_generate_pkce_pair() -> None:
    verifier, challenge = generate_pkce_pair()
    assert 43 <= len(verifier) <= 128
    expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=").decode()
    assert challenge == expected


class TestAuthorizationRequest:
    def test_url_parameters(self, oidc_client: OIDCClient) -> None:
        auth_request = oidc_client.build_authorization_request()

        assert auth_request.url.startswith("https://tenant.example.com/authorize?")
        params = query(auth_request.url)
        assert params["client_id"] == CLIENT_ID
        assert params["redirect_uri"] == "https://app.example.com/callback"
        assert params["response_type"] == "code"
        assert params["scope"] == "openid profile email"
        assert params["state"] == auth_request.state
        assert params["nonce"] == auth_request.nonce
        assert params["code_challenge_method"] == "S256"
        assert "audience" not in params

    def test_state_and_nonce_are_fresh(self, oidc_client: OIDCClient) -> None:
        first = oidc_client.build_authorization_request()
        second = oidc_client.build_authorization_request()

        assert first.state != second.state
        assert first.nonce != second.nonce
        assert first.state != first.nonce
        # 32 random bytes, urlsafe base64 without padding
        assert len(first.state) == 43

    def test_audience_included(self, oidc_client: OIDCClient) -> None:
        auth_request = oidc_client.build_authorization_request("https://api.example.com")
        assert query(auth_request.url)["audience"] == "https://api.example.com"

    def test_without_pkce(self, config: ClientConfig, http_client: httpx.AsyncClient) -> None:
        client = OIDCClient(config.model_copy(update={"use_pkce": False}), http_client)
        auth_request = client.build_authorization_request()
        assert auth_request.code_verifier is None
        assert "code_challenge" not in query(auth_request.url)

    @pytest.mark.parametrize("update", [{"client_id": ""}, {"issuer": ""}])
    def test_missing_configuration(
        self, config: ClientConfig, http_client: httpx.AsyncClient, update: dict[str, str]
    ) -> None:
        client = OIDCClient(config.model_copy(update=update), http_client)
        with pytest.raises(ConfigError):
            client.build_authorization_request()


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_exchange_success(self, oidc_client: OIDCClient, idp: FakeIdP) -> None:
        auth_request = oidc_client.build_authorization_request()
        code = idp.authorize(auth_request.url)

        tokens = await oidc_client.exchange_code(code, auth_request.state, auth_request.state, auth_request.code_verifier)

        assert tokens.id_token
        assert tokens.access_token.startswith("access-")
        assert tokens.expires_in == 86400
        form = idp.last_token_form
        assert form["grant_type"] == "authorization_code"
        assert form["client_id"] == CLIENT_ID
        assert form["client_secret"] == "client-secret"
        assert form["redirect_uri"] == "https://app.example.com/callback"
        assert form["code_verifier"] == auth_request.code_verifier

    @pytest.mark.asyncio
    async def test_state_mismatch_makes_no_request(self, oidc_client: OIDCClient, idp: FakeIdP) -> None:
        with pytest.raises(StateMismatchError):
            await oidc_client.exchange_code("code", "expected-state", "attacker-state")
        assert idp.calls["/oauth/token"] == 0

    @pytest.mark.asyncio
    async def test_error_response_not_retried(self, oidc_client: OIDCClient, idp: FakeIdP) -> None:
        idp.token_status = 403
        idp.token_error_body = {"error": "unauthorized_client", "error_description": "nope"}

        with pytest.raises(TokenExchangeError) as exc_info:
            await oidc_client.exchange_code("code", "s", "s")

        assert exc_info.value.status_code == 403
        assert exc_info.value.body is not None
        assert "unauthorized_client" in exc_info.value.body
        assert idp.calls["/oauth/token"] == 1

    @pytest.mark.asyncio
    async def test_unknown_code_rejected(self, oidc_client: OIDCClient) -> None:
        with pytest.raises(TokenExchangeError, match="status 400"):
            await oidc_client.exchange_code("never-issued", "s", "s")

    @pytest.mark.asyncio
    async def test_network_error_retried_once(self, config: ClientConfig) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("unreachable")

        with patch("coreason_oidc.transport.RETRY_WAIT", 0):
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                with pytest.raises(TokenExchangeError, match="ConnectError"):
                    await OIDCClient(config, client).exchange_code("code", "s", "s")

        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_blocked_destination(self, config: ClientConfig) -> None:
        private = config.model_copy(update={"issuer": "https://10.0.0.1/"})
        async with httpx.AsyncClient(transport=SafeHTTPTransport()) as client:
            with pytest.raises(TokenExchangeError, match="SecurityError"):
                await OIDCClient(private, client).exchange_code("code", "s", "s")

    @pytest.mark.asyncio
    async def test_invalid_token_response(self, config: ClientConfig) -> None:
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"token_type": "Bearer"}))
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(TokenExchangeError, match="invalid response"):
                await OIDCClient(config, client).exchange_code("code", "s", "s")


class TestLogoutUrl:
    def test_logout_url_with_relative_return(self, oidc_client: OIDCClient) -> None:
        url = oidc_client.build_logout_url("/home", REQUEST)
        assert url == (
            "https://tenant.example.com/v2/logout?client_id=client-123&returnTo=https%3A%2F%2Fapp.example.com%2Fhome"
        )

    def test_logout_url_with_absolute_return(self, oidc_client: OIDCClient) -> None:
        url = oidc_client.build_logout_url("https://other.example.com/bye")
        assert query(url)["returnTo"] == "https://other.example.com/bye"

    def test_logout_url_without_return(self, oidc_client: OIDCClient) -> None:
        assert oidc_client.build_logout_url() == "https://tenant.example.com/v2/logout?client_id=client-123"

    def test_relative_return_requires_request(self, oidc_client: OIDCClient) -> None:
        with pytest.raises(ConfigError, match="request context"):
            oidc_client.build_logout_url("/home")
