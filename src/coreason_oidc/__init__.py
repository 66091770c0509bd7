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
OpenID Connect relying party: Authorization Code login, ID token validation and
session establishment, decoupled from the hosting web framework.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import ClientConfig, load_config
from .endpoints import AuthEndpoints
from .exceptions import (
    AudienceMismatchError,
    AuthenticationError,
    AuthorizationDeniedError,
    ConfigError,
    CoreasonOIDCError,
    ExpiredTokenError,
    InvalidSignatureError,
    InvalidTokenError,
    IssuerMismatchError,
    NonceMismatchError,
    ProviderUnavailableError,
    StateMismatchError,
    TokenExchangeError,
    UnknownStateError,
)
from .models import AuthorizationRequest, CallbackResult, Principal, Redirect, RequestContext, TokenSet
from .oidc_client import OIDCClient
from .oidc_provider import OIDCProvider
from .orchestrator import AuthenticationOrchestrator, RelyingParty
from .pending_store import MemoryPendingLoginStore, PendingLoginStore
from .session import ContextSessionStore, MemorySessionStore, SessionStore
from .validator import TokenValidator

__all__ = [
    "AudienceMismatchError",
    "AuthEndpoints",
    "AuthenticationError",
    "AuthenticationOrchestrator",
    "AuthorizationDeniedError",
    "AuthorizationRequest",
    "CallbackResult",
    "ClientConfig",
    "ConfigError",
    "ContextSessionStore",
    "CoreasonOIDCError",
    "ExpiredTokenError",
    "InvalidSignatureError",
    "InvalidTokenError",
    "IssuerMismatchError",
    "MemoryPendingLoginStore",
    "MemorySessionStore",
    "NonceMismatchError",
    "OIDCClient",
    "OIDCProvider",
    "PendingLoginStore",
    "Principal",
    "ProviderUnavailableError",
    "Redirect",
    "RelyingParty",
    "RequestContext",
    "SessionStore",
    "StateMismatchError",
    "TokenExchangeError",
    "TokenSet",
    "TokenValidator",
    "UnknownStateError",
    "load_config",
]
