# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
OIDCClient component for the Authorization Code flow: authorize URL, code redemption
and logout URL.
"""

import base64
import hashlib
import hmac
import json
import secrets
from urllib.parse import urlencode, urljoin, urlparse

import httpx
from pydantic import ValidationError

from coreason_oidc.config import ClientConfig
from coreason_oidc.exceptions import (
    ConfigError,
    OversizedResponseError,
    SecurityError,
    StateMismatchError,
    TokenExchangeError,
)
from coreason_oidc.models import AuthorizationRequest, RequestContext, TokenSet
from coreason_oidc.transport import send_with_retry
from coreason_oidc.utils.logger import logger

# Bytes of randomness for state and nonce (256 bits)
RANDOM_BYTES = 32


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    # RFC 7636: 43-128 characters from unreserved character set
    code_verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


class OIDCClient:
    """
    Talks to the provider's authorize, token and logout endpoints on behalf of the relying party.

    Attributes:
        config (ClientConfig): The relying-party configuration.
        client (httpx.AsyncClient): HTTP client for back-channel calls.
    """

    def __init__(self, config: ClientConfig, client: httpx.AsyncClient) -> None:
        self.config = config
        self.client = client

    def _require_config(self) -> None:
        if not self.config.issuer or not self.config.issuer.strip("/"):
            raise ConfigError("Issuer is not configured")
        if not self.config.client_id:
            raise ConfigError("Client ID is not configured")

    @property
    def authorization_endpoint(self) -> str:
        return urljoin(self.config.issuer_base, "authorize")

    @property
    def token_endpoint(self) -> str:
        return urljoin(self.config.issuer_base, "oauth/token")

    @property
    def logout_endpoint(self) -> str:
        return urljoin(self.config.issuer_base, "v2/logout")

    def build_authorization_request(self, audience: str | None = None) -> AuthorizationRequest:
        """
        Creates a fresh login attempt and the provider URL to redirect the browser to.

        Args:
            audience: API identifier to request an access token for. Omitting it yields
                an ID-token-only login.

        Returns:
            AuthorizationRequest: state, nonce, PKCE verifier and redirect URL.

        Raises:
            ConfigError: If issuer or client_id is missing.
        """
        self._require_config()

        state = secrets.token_urlsafe(RANDOM_BYTES)
        nonce = secrets.token_urlsafe(RANDOM_BYTES)

        params: dict[str, str] = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": self.config.scope,
            "state": state,
            "nonce": nonce,
        }
        if audience:
            params["audience"] = audience

        code_verifier: str | None = None
        if self.config.use_pkce:
            code_verifier, code_challenge = generate_pkce_pair()
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"

        url = f"{self.authorization_endpoint}?{urlencode(params)}"
        return AuthorizationRequest(state=state, nonce=nonce, code_verifier=code_verifier, url=url)

    async def exchange_code(
        self,
        code: str,
        expected_state: str,
        received_state: str,
        code_verifier: str | None = None,
    ) -> TokenSet:
        """
        Redeems an authorization code at the token endpoint.

        Args:
            code: The authorization code from the callback.
            expected_state: The state issued with the authorization request.
            received_state: The state echoed back on the callback.
            code_verifier: The PKCE verifier, if PKCE was used.

        Returns:
            TokenSet: The tokens issued by the provider.

        Raises:
            StateMismatchError: If the two states differ.
            TokenExchangeError: On network failure or a non-success response. The provider's
                status and body are attached for diagnostics.
        """
        if not hmac.compare_digest(expected_state.encode(), received_state.encode()):
            logger.warning("Callback state does not match the issued state (possible CSRF)")
            raise StateMismatchError("State parameter mismatch")

        self._require_config()

        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "client_id": self.config.client_id,
            "code": code,
            "redirect_uri": self.config.redirect_uri,
        }
        if self.config.client_secret is not None:
            data["client_secret"] = self.config.client_secret.get_secret_value()
        if code_verifier:
            data["code_verifier"] = code_verifier

        url = self.token_endpoint
        try:
            response, content = await send_with_retry(
                self.client, "POST", url, data=data, headers={"Accept": "application/json"}
            )
        except (httpx.HTTPError, OversizedResponseError, SecurityError) as e:
            logger.error(f"Token exchange request to {url} failed: {e!r}")
            raise TokenExchangeError(f"Token exchange failed: {type(e).__name__}") from e

        body = content.decode("utf-8", errors="replace")
        if not response.is_success:
            logger.error(f"Token exchange rejected with status {response.status_code}: {body[:500]}")
            raise TokenExchangeError(
                f"Token endpoint returned status {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        try:
            token_set = TokenSet(**json.loads(content))
        except (ValueError, TypeError, ValidationError) as e:
            logger.error(f"Invalid token response: {e}")
            raise TokenExchangeError(
                "Token endpoint returned an invalid response", status_code=response.status_code, body=body
            ) from e

        logger.info("Authorization code redeemed successfully.")
        return token_set

    def build_logout_url(
        self, post_logout_redirect_uri: str | None = None, request: RequestContext | None = None
    ) -> str:
        """
        Builds the provider logout URL, optionally sending the browser back afterwards.

        Args:
            post_logout_redirect_uri: Absolute URL, or a path relative to the application.
            request: The current request; required to resolve a relative URI.

        Returns:
            str: `{issuer}v2/logout?client_id=...[&returnTo=...]`.

        Raises:
            ConfigError: If a relative URI is given without a request context.
        """
        self._require_config()

        params: dict[str, str] = {"client_id": self.config.client_id}
        if post_logout_redirect_uri:
            params["returnTo"] = self._absolute(post_logout_redirect_uri, request)

        return f"{self.logout_endpoint}?{urlencode(params)}"

    @staticmethod
    def _absolute(uri: str, request: RequestContext | None) -> str:
        parsed = urlparse(uri)
        if parsed.scheme in ("http", "https") and parsed.netloc:
            return uri
        if request is None:
            raise ConfigError(f"Cannot resolve relative redirect URI {uri!r} without a request context")
        return request.absolute(uri)
