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
Custom exceptions for the coreason-oidc package.
"""


class CoreasonOIDCError(Exception):
    """Base exception for all coreason-oidc errors."""


class ConfigError(CoreasonOIDCError):
    """Raised when required relying-party settings are missing or invalid."""


class SecurityError(CoreasonOIDCError):
    """Raised when an outbound request targets a prohibited address."""


class OversizedResponseError(CoreasonOIDCError):
    """Raised when an HTTP response is too large."""


class AuthenticationError(CoreasonOIDCError):
    """Base class for everything that makes a single login attempt fail."""


class AuthorizationDeniedError(AuthenticationError):
    """
    Raised when the provider redirects back with an `error` parameter
    (e.g. the user declined consent).
    """

    def __init__(self, error: str, description: str | None = None) -> None:
        self.error = error
        self.description = description
        super().__init__(f"Authorization denied by provider: {error}")


class StateMismatchError(AuthenticationError):
    """Raised when the callback `state` differs from the one issued (possible CSRF)."""


class UnknownStateError(AuthenticationError):
    """Raised when no live pending login matches the callback `state` (expired or replayed)."""


class TokenExchangeError(AuthenticationError):
    """
    Raised when redeeming the authorization code fails.

    The provider's status code and raw body are kept for diagnostics only.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ProviderUnavailableError(AuthenticationError):
    """Raised when the discovery document or JWKS cannot be fetched."""


class InvalidTokenError(AuthenticationError):
    """Raised when the ID token is invalid (malformed, missing claims, etc.)."""


class InvalidSignatureError(InvalidTokenError):
    """Raised when the token's signature cannot be verified or its key is unknown."""


class IssuerMismatchError(InvalidTokenError):
    """Raised when the token's issuer does not match the configured issuer."""


class AudienceMismatchError(InvalidTokenError):
    """Raised when the token's audience does not contain the client id."""


class ExpiredTokenError(InvalidTokenError):
    """Raised when the provided token has expired."""


class NonceMismatchError(InvalidTokenError):
    """Raised when the token's nonce differs from the one issued with the login request."""


# Failures that indicate CSRF or replay rather than a broken provider.
REPLAY_SUSPECT_ERRORS = (StateMismatchError, UnknownStateError, NonceMismatchError)
