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
Authentication orchestration: challenge, callback and logout for one request, plus
the RelyingParty that owns the shared resources.
"""

import secrets
import time
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr

from coreason_oidc.config import ClientConfig
from coreason_oidc.exceptions import (
    REPLAY_SUSPECT_ERRORS,
    AuthenticationError,
    AuthorizationDeniedError,
    InvalidTokenError,
    TokenExchangeError,
    UnknownStateError,
)
from coreason_oidc.models import (
    AuthorizationRequest,
    CallbackResult,
    LoginState,
    Principal,
    RequestContext,
    StoredTokens,
)
from coreason_oidc.models_internal import PendingLogin
from coreason_oidc.oidc_client import OIDCClient
from coreason_oidc.oidc_provider import OIDCProvider
from coreason_oidc.pending_store import MemoryPendingLoginStore, PendingLoginSigner, PendingLoginStore
from coreason_oidc.session import SessionStore
from coreason_oidc.transport import SafeHTTPTransport
from coreason_oidc.utils.logger import anonymize, logger
from coreason_oidc.validator import TokenValidator

tracer = trace.get_tracer(__name__)


def sanitize_return_url(return_url: str | None) -> str:
    """
    Keeps post-login redirects on this application.

    Only local absolute paths are accepted; anything else (absolute or
    protocol-relative URLs, backslash tricks) becomes "/".
    """
    if not return_url:
        return "/"
    return_url = return_url.strip()
    if not return_url.startswith("/") or return_url.startswith(("//", "/\\")):
        return "/"
    parsed = urlparse(return_url)
    if parsed.scheme or parsed.netloc:
        return "/"
    return return_url


class AuthenticationOrchestrator:
    """
    Drives a login attempt for one request through
    UNAUTHENTICATED -> CHALLENGE_ISSUED -> CODE_RECEIVED -> VALIDATED -> SESSION_ESTABLISHED,
    or to REJECTED on any failure.

    Everything attempt-specific lives in the signed pending record; the orchestrator
    itself holds no state shared between users.
    """

    def __init__(
        self,
        config: ClientConfig,
        session: SessionStore,
        oidc_client: OIDCClient,
        validator: TokenValidator,
        pending_store: PendingLoginStore,
        signer: PendingLoginSigner,
        request: RequestContext | None = None,
    ) -> None:
        self.config = config
        self.session = session
        self.oidc_client = oidc_client
        self.validator = validator
        self.pending_store = pending_store
        self.signer = signer
        self.request = request
        self.state = LoginState.UNAUTHENTICATED

    def _transition(self, new_state: LoginState) -> None:
        logger.debug(f"Login attempt: {self.state} -> {new_state}")
        self.state = new_state

    def current_principal(self) -> Principal | None:
        """Returns the authenticated principal for this request, if any."""
        return self.session.get()

    def challenge(self, return_url: str | None = "/", audience: str | None = None) -> AuthorizationRequest:
        """
        Starts a login attempt.

        Args:
            return_url: Local path to return to after login.
            audience: API to request an access token for; defaults to the configured audience.

        Returns:
            AuthorizationRequest: Its `url` is the redirect target for the browser.

        Raises:
            ConfigError: If the client is not configured.
        """
        audience = audience or self.config.audience
        auth_request = self.oidc_client.build_authorization_request(audience)

        ttl = self.config.pending_login_ttl
        record = PendingLogin(
            state=auth_request.state,
            nonce=auth_request.nonce,
            return_url=sanitize_return_url(return_url),
            code_verifier=auth_request.code_verifier,
            audience=audience,
            exp=int(time.time()) + ttl,
        )
        with logger.contextualize(login_attempt=anonymize(auth_request.state)):
            self.pending_store.put(auth_request.state, self.signer.sign(record), ttl)
            self._transition(LoginState.CHALLENGE_ISSUED)
            logger.info("Login challenge issued")
        return auth_request

    async def complete_callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> CallbackResult:
        """
        Handles the provider's redirect back to the application.

        The pending record for `state` is consumed on first lookup whatever the outcome,
        so a replayed callback fails with `UnknownStateError`.

        Emits an OpenTelemetry span `complete_callback`. Log records carry a hashed
        `login_attempt` id, matching the one logged by `challenge`.

        Returns:
            CallbackResult: The principal now in the session and the stored return URL.

        Raises:
            AuthorizationDeniedError: If the provider reported `error`.
            UnknownStateError: If no live pending login matches `state`.
            StateMismatchError, TokenExchangeError, InvalidTokenError (and subclasses),
            ProviderUnavailableError: If the exchange or validation fails.
        """
        attempt = anonymize(state) if state else "missing"
        with (
            logger.contextualize(login_attempt=attempt),
            tracer.start_as_current_span(
                "complete_callback", record_exception=False, set_status_on_exception=False
            ) as span,
        ):
            try:
                result = await self._complete(code, state, error, error_description)
            except AuthenticationError as e:
                self._transition(LoginState.REJECTED)
                self._log_rejection(e)
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                raise
            span.set_status(Status(StatusCode.OK))
            return result

    async def _complete(
        self,
        code: str | None,
        state: str | None,
        error: str | None,
        error_description: str | None,
    ) -> CallbackResult:
        if error:
            if state:
                self.pending_store.consume(state)
            raise AuthorizationDeniedError(error, error_description)

        if not state:
            raise UnknownStateError("Callback is missing the state parameter")

        blob = self.pending_store.consume(state)
        if blob is None:
            raise UnknownStateError("Login attempt is unknown or has expired")
        record = self.signer.verify(blob)
        if self.state is LoginState.UNAUTHENTICATED:
            # Attempt resumed from its pending record on a new request
            self._transition(LoginState.CHALLENGE_ISSUED)

        if not code:
            raise TokenExchangeError("Callback is missing the authorization code")
        self._transition(LoginState.CODE_RECEIVED)

        token_set = await self.oidc_client.exchange_code(code, record.state, state, record.code_verifier)

        keep_access_token = bool(record.audience) or self.config.save_tokens
        tokens = StoredTokens(
            access_token=SecretStr(token_set.access_token) if keep_access_token else None,
            id_token=SecretStr(token_set.id_token) if self.config.save_tokens else None,
            refresh_token=(
                SecretStr(token_set.refresh_token) if self.config.save_tokens and token_set.refresh_token else None
            ),
        )
        principal = await self.validator.validate_principal(token_set.id_token, record.nonce, tokens)
        self._transition(LoginState.VALIDATED)

        self.session.set(principal)
        self._transition(LoginState.SESSION_ESTABLISHED)
        return CallbackResult(principal=principal, return_url=record.return_url)

    @staticmethod
    def _log_rejection(e: AuthenticationError) -> None:
        kind = type(e).__name__
        if isinstance(e, REPLAY_SUSPECT_ERRORS):
            logger.warning(f"Login rejected ({kind}): possible CSRF or replay: {e}")
        elif isinstance(e, AuthorizationDeniedError):
            logger.info(f"Login denied by provider: {e.error}")
        elif isinstance(e, InvalidTokenError):
            logger.warning(f"Login rejected ({kind}): {e}")
        else:
            logger.error(f"Login failed ({kind}): {e}")

    def logout(self, post_logout_redirect_uri: str | None = None) -> str:
        """
        Clears the local session and returns the provider logout URL.

        Clearing is unconditional and idempotent.

        Args:
            post_logout_redirect_uri: Where the provider should send the browser afterwards.
                Defaults to the configured post-logout redirect URI.
        """
        self.session.clear()
        self._transition(LoginState.UNAUTHENTICATED)
        target = post_logout_redirect_uri or self.config.post_logout_redirect_uri
        return self.oidc_client.build_logout_url(target, self.request)


class RelyingParty:
    """
    Owns the resources shared by all requests: HTTP client, key cache, validator and
    pending-login store. Hands out a per-request `AuthenticationOrchestrator`.
    Handles resources via async context manager.
    """

    def __init__(
        self,
        config: ClientConfig,
        client: httpx.AsyncClient | None = None,
        pending_store: PendingLoginStore | None = None,
    ) -> None:
        """
        Initialize the RelyingParty.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, a `SafeHTTPTransport` client is created.
            pending_store: Store for in-flight logins. Defaults to `MemoryPendingLoginStore`.
        """
        self.config = config
        self._internal_client = client is None

        if client is not None:
            self._client = client
        else:
            transport = httpx.AsyncHTTPTransport() if config.unsafe_local_dev else SafeHTTPTransport()
            self._client = httpx.AsyncClient(transport=transport, timeout=config.http_timeout)
            # Instrument the client for distributed tracing
            HTTPXClientInstrumentor().instrument_client(self._client)

        discovery_url = urljoin(config.issuer_base, ".well-known/openid-configuration")
        self.oidc_provider = OIDCProvider(
            discovery_url,
            self._client,
            cache_ttl=config.jwks_cache_ttl,
            refresh_cooldown=config.jwks_refresh_cooldown,
        )
        self.validator = TokenValidator(
            oidc_provider=self.oidc_provider,
            client_id=config.client_id,
            issuer=config.issuer,
            allowed_algorithms=config.allowed_algorithms,
            leeway=config.clock_skew_leeway,
            name_claim=config.name_claim,
        )
        self.oidc_client = OIDCClient(config, self._client)
        self.pending_store: PendingLoginStore = (
            pending_store if pending_store is not None else MemoryPendingLoginStore()
        )

        if config.state_secret is not None:
            secret = config.state_secret.get_secret_value().encode("utf-8")
        else:
            logger.warning(
                "No state_secret configured; using an ephemeral key. Pending logins will not "
                "survive a restart or be shared between processes."
            )
            secret = secrets.token_bytes(32)
        self.signer = PendingLoginSigner(secret)

    async def __aenter__(self) -> "RelyingParty":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()

    def orchestrator(self, session: SessionStore, request: RequestContext | None = None) -> AuthenticationOrchestrator:
        """
        Returns an orchestrator bound to one request's session.
        """
        return AuthenticationOrchestrator(
            config=self.config,
            session=session,
            oidc_client=self.oidc_client,
            validator=self.validator,
            pending_store=self.pending_store,
            signer=self.signer,
            request=request,
        )
