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
Internal data models for the coreason-oidc package.
These are not exposed in the public API.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OIDCMetadata(BaseModel):
    """
    OIDC Configuration from .well-known/openid-configuration.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = Field(..., description="The OIDC issuer URL.")
    jwks_uri: str = Field(..., description="The URL to the JWKS.")
    authorization_endpoint: str | None = Field(default=None, description="The authorize endpoint URL.")
    token_endpoint: str | None = Field(default=None, description="The token endpoint URL.")
    end_session_endpoint: str | None = Field(default=None, description="The RP-initiated logout endpoint URL.")


class PendingLogin(BaseModel):
    """
    Server-side record of a login attempt between challenge and callback.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    state: str
    nonce: str
    return_url: str = "/"
    code_verifier: str | None = None
    audience: str | None = None
    exp: int


class JwksSnapshot(BaseModel):
    """
    Immutable view of the signing-key cache at one refresh generation.
    """

    model_config = ConfigDict(frozen=True)

    generation: int
    keys: dict[str, dict[str, Any]] = Field(default_factory=dict, description="JWKs indexed by 'kid'.")
    unidentified: list[dict[str, Any]] = Field(default_factory=list, description="JWKs without a 'kid'.")

    @classmethod
    def from_jwks(cls, jwks: dict[str, Any], generation: int) -> "JwksSnapshot":
        keys: dict[str, dict[str, Any]] = {}
        unidentified: list[dict[str, Any]] = []
        for jwk in jwks.get("keys", []):
            if not isinstance(jwk, dict):
                continue
            if jwk.get("use", "sig") != "sig":
                continue
            kid = jwk.get("kid")
            if kid:
                keys[str(kid)] = jwk
            else:
                unidentified.append(jwk)
        return cls(generation=generation, keys=keys, unidentified=unidentified)
