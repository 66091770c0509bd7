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
Data models for the coreason-oidc package.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, computed_field


class LoginState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    CHALLENGE_ISSUED = "challenge_issued"
    CODE_RECEIVED = "code_received"
    VALIDATED = "validated"
    SESSION_ESTABLISHED = "session_established"
    REJECTED = "rejected"


class AuthorizationRequest(BaseModel):
    """
    A single-use login attempt handed to the browser as a redirect.

    Attributes:
        state (str): Opaque CSRF token echoed back by the provider.
        nonce (str): Value the provider must embed in the ID token.
        code_verifier (str | None): PKCE verifier, kept server-side only.
        url (str): The provider's authorize URL the browser is sent to.
    """

    model_config = ConfigDict(frozen=True)

    state: str
    nonce: str
    code_verifier: str | None = None
    url: str

    def __repr__(self) -> str:
        return f"AuthorizationRequest(url={self.url!r})"


class TokenSet(BaseModel):
    """
    Tokens returned by the provider's token endpoint.

    Attributes:
        id_token (str): The signed ID token (JWT).
        access_token (str): The access token issued by the authorization server.
        refresh_token (str | None): The refresh token, if issued.
        token_type (str): The type of the token (e.g. "Bearer").
        expires_in (int | None): The lifetime in seconds of the access token.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id_token: str
    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    received_at: float = Field(default_factory=time.time, exclude=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def expires_at(self) -> float | None:
        if self.expires_in is None:
            return None
        return self.received_at + self.expires_in

    def __repr__(self) -> str:
        return f"TokenSet(token_type={self.token_type!r}, expires_in={self.expires_in!r})"


class StoredTokens(BaseModel):
    """Tokens retained in the session alongside the principal. Protected from logging."""

    model_config = ConfigDict(frozen=True)

    access_token: SecretStr | None = None
    id_token: SecretStr | None = None
    refresh_token: SecretStr | None = None


class Principal(BaseModel):
    """
    The authenticated identity stored in the session.

    Well-known keys are typed fields (`subject`, `name`, `tokens`); everything the
    provider asserted is kept in `claims`.

    This model is frozen (immutable) to ensure integrity as it passes through the system.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        json_schema_extra={
            "example": {
                "subject": "auth0|123456",
                "name": "Alice",
                "claims": {"sub": "auth0|123456", "name": "Alice", "email": "alice@coreason.ai"},
            }
        },
    )

    subject: str = Field(..., description="The immutable subject ID ('sub').", examples=["auth0|123456"])
    name: str = Field(..., description="Display name taken from the configured name claim.")
    claims: dict[str, Any] = Field(default_factory=dict, description="All validated ID token claims.")
    tokens: StoredTokens = Field(default_factory=StoredTokens)

    @property
    def access_token(self) -> str | None:
        return self.tokens.access_token.get_secret_value() if self.tokens.access_token else None

    @property
    def id_token(self) -> str | None:
        return self.tokens.id_token.get_secret_value() if self.tokens.id_token else None

    def to_session(self) -> dict[str, Any]:
        """
        Serializes the principal, tokens included, for a session backend.

        The result contains secrets; session backends must keep it server-side or encrypted.
        """
        data = self.model_dump(exclude={"tokens"})
        data["tokens"] = {
            key: secret.get_secret_value()
            for key, secret in (
                ("access_token", self.tokens.access_token),
                ("id_token", self.tokens.id_token),
                ("refresh_token", self.tokens.refresh_token),
            )
            if secret is not None
        }
        return data

    @classmethod
    def from_session(cls, data: dict[str, Any]) -> "Principal":
        return cls.model_validate(data)

    def __repr__(self) -> str:
        # PII fields MUST be redacted in __repr__
        return f"Principal(subject='<REDACTED>', name='<REDACTED>', claims=<{len(self.claims)} claims>)"

    def __str__(self) -> str:
        return self.__repr__()


class RequestContext(BaseModel):
    """
    The parts of the current inbound request needed to build absolute URLs.

    Attributes:
        scheme (str): "http" or "https".
        host (str): Host header value, including a non-default port.
        path_base (str): Mount point of the application (e.g. "/app"), or "".
    """

    model_config = ConfigDict(frozen=True)

    scheme: str = "https"
    host: str
    path_base: str = ""

    def absolute(self, uri: str) -> str:
        """Resolves an application-relative URI against this request."""
        base = self.path_base.strip("/")
        path = uri.lstrip("/")
        prefix = f"{self.scheme}://{self.host}"
        if base:
            prefix = f"{prefix}/{base}"
        return f"{prefix}/{path}"


class CallbackResult(BaseModel):
    """Outcome of a successful callback: the principal and where to send the browser."""

    model_config = ConfigDict(frozen=True)

    principal: Principal
    return_url: str


class Redirect(BaseModel):
    """A framework-neutral redirect response."""

    model_config = ConfigDict(frozen=True)

    location: str
    status_code: int = 302
