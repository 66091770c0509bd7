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
import secrets
import time
from collections import Counter
from collections.abc import AsyncGenerator
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from authlib.jose import JsonWebKey, jwt
from pydantic import SecretStr

from coreason_oidc.config import ClientConfig
from coreason_oidc.orchestrator import RelyingParty

ISSUER = "https://tenant.example.com/"
CLIENT_ID = "client-123"


class FakeIdP:
    """
    Minimal OIDC provider served through httpx.MockTransport.
    """

    def __init__(self, key: Any, client_id: str = CLIENT_ID) -> None:
        self.key = key
        self.client_id = client_id
        self.jwks_keys: list[dict[str, Any]] = [key.as_dict(is_private=False)]
        self.codes: dict[str, dict[str, str]] = {}
        self.calls: Counter[str] = Counter()
        self.extra_claims: dict[str, Any] = {}
        self.token_status = 200
        self.token_error_body: dict[str, Any] = {"error": "invalid_grant"}
        self.last_token_form: dict[str, str] = {}

    @property
    def kid(self) -> str:
        return str(self.key.as_dict()["kid"])

    def mint(
        self,
        claims: dict[str, Any] | None = None,
        key: Any = None,
        headers: dict[str, Any] | None = None,
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": ISSUER,
            "sub": "auth0|alice",
            "aud": self.client_id,
            "iat": now,
            "exp": now + 3600,
            "name": "Alice Example",
            "email": "alice@example.com",
        }
        payload.update(claims or {})
        signing_key = key or self.key
        header = headers or {"alg": "RS256", "kid": signing_key.as_dict()["kid"]}
        return jwt.encode(header, payload, signing_key).decode("utf-8")  # type: ignore[no-any-return]

    def authorize(self, url: str) -> str:
        """Simulates the user logging in at the authorize URL; returns the code."""
        params = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        code = secrets.token_urlsafe(12)
        self.codes[code] = params
        return code

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] += 1

        if path == "/.well-known/openid-configuration":
            return httpx.Response(
                200,
                json={
                    "issuer": ISSUER,
                    "jwks_uri": f"{ISSUER}.well-known/jwks.json",
                    "authorization_endpoint": f"{ISSUER}authorize",
                    "token_endpoint": f"{ISSUER}oauth/token",
                },
            )

        if path == "/.well-known/jwks.json":
            return httpx.Response(200, json={"keys": self.jwks_keys})

        if path == "/oauth/token":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.last_token_form = form
            if self.token_status != 200:
                return httpx.Response(self.token_status, json=self.token_error_body)

            params = self.codes.pop(form.get("code", ""), None)
            if params is None:
                return httpx.Response(400, json={"error": "invalid_grant"})

            challenge = params.get("code_challenge")
            if challenge:
                digest = hashlib.sha256(form.get("code_verifier", "").encode("ascii")).digest()
                if base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii") != challenge:
                    return httpx.Response(400, json={"error": "invalid_grant"})

            claims = {"nonce": params["nonce"], **self.extra_claims}
            return httpx.Response(
                200,
                json={
                    "id_token": self.mint(claims),
                    "access_token": "access-" + secrets.token_urlsafe(8),
                    "refresh_token": "refresh-" + secrets.token_urlsafe(8),
                    "token_type": "Bearer",
                    "expires_in": 86400,
                },
            )

        return httpx.Response(404)


@pytest.fixture(scope="session")
def rsa_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture
def idp(rsa_key: Any) -> FakeIdP:
    return FakeIdP(rsa_key)


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        domain="tenant.example.com",
        client_id=CLIENT_ID,
        client_secret=SecretStr("client-secret"),
        redirect_uri="https://app.example.com/callback",
        post_logout_redirect_uri="/home",
        clock_skew_leeway=0,
        state_secret=SecretStr("0123456789abcdef0123456789abcdef"),
        jwks_refresh_cooldown=0,
    )


@pytest.fixture
async def http_client(idp: FakeIdP) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(idp.handler)) as client:
        yield client


@pytest.fixture
async def relying_party(config: ClientConfig, http_client: httpx.AsyncClient) -> AsyncGenerator[RelyingParty, None]:
    async with RelyingParty(config, client=http_client) as rp:
        yield rp
