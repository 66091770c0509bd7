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
ClaimsMapper component for mapping validated ID token claims to a Principal.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from coreason_oidc.exceptions import InvalidTokenError
from coreason_oidc.models import Principal, StoredTokens
from coreason_oidc.utils.logger import anonymize, logger

# Tried in order after the configured name claim
FALLBACK_NAME_CLAIMS = ("nickname", "preferred_username", "email")


class RawIdTokenClaims(BaseModel):
    """
    Internal model to check the claims the mapper relies on before business logic.

    Attributes:
        sub (str): The subject (user ID) from the IdP.
    """

    model_config = ConfigDict(extra="allow")

    sub: str

    @field_validator("sub")
    @classmethod
    def non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("sub must not be empty")
        return v


class ClaimsMapper:
    """
    Maps validated claims to the `Principal` stored in the session.

    Attributes:
        name_claim (str): Claim used as the display name.
    """

    def __init__(self, name_claim: str = "name") -> None:
        self.name_claim = name_claim

    def _display_name(self, claims: dict[str, Any], subject: str) -> str:
        for key in (self.name_claim, *FALLBACK_NAME_CLAIMS):
            value = claims.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return subject

    def map_claims(self, claims: dict[str, Any], tokens: StoredTokens | None = None) -> Principal:
        """
        Transform validated claims into a Principal.

        Args:
            claims: The dictionary of validated claims from the ID token.
            tokens: Tokens to keep in the session alongside the claims (optional).

        Returns:
            A populated Principal.

        Raises:
            InvalidTokenError: If required claims are missing or malformed.
        """
        try:
            raw = RawIdTokenClaims(**claims)
        except ValidationError as e:
            raise InvalidTokenError(f"ID token claims are insufficient: {e}") from e

        principal = Principal(
            subject=raw.sub,
            name=self._display_name(claims, raw.sub),
            claims=dict(claims),
            tokens=tokens or StoredTokens(),
        )
        logger.debug(f"Mapped identity for user {anonymize(raw.sub)}")
        return principal
