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
TokenValidator component for validating ID token signatures and claims.
"""

import hmac
from typing import Any, cast

from authlib.common.encoding import to_bytes
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import (
    BadSignatureError,
    DecodeError,
    InvalidClaimError,
    JoseError,
    MissingClaimError,
)
from authlib.jose.errors import ExpiredTokenError as JoseExpiredTokenError
from authlib.jose.util import extract_header
from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

from coreason_oidc.claims_mapper import ClaimsMapper
from coreason_oidc.exceptions import (
    AudienceMismatchError,
    AuthenticationError,
    ExpiredTokenError,
    InvalidSignatureError,
    InvalidTokenError,
    IssuerMismatchError,
    NonceMismatchError,
)
from coreason_oidc.models import Principal, StoredTokens
from coreason_oidc.models_internal import JwksSnapshot
from coreason_oidc.oidc_provider import OIDCProvider
from coreason_oidc.utils.logger import anonymize, logger

tracer = trace.get_tracer(__name__)


def read_unverified_header(token: str) -> dict[str, Any]:
    """
    Decodes the JOSE header of a compact JWS without verifying anything.

    Raises:
        InvalidTokenError: If the token is not a well-formed compact JWS.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise InvalidTokenError("Malformed token: expected three segments")
    try:
        return cast(dict[str, Any], extract_header(to_bytes(parts[0]), DecodeError))
    except DecodeError as e:
        raise InvalidTokenError(f"Malformed token header: {e}") from e


class TokenValidator:
    """
    Validates ID tokens against the IdP's JWKS and the relying party's expectations.

    Attributes:
        oidc_provider (OIDCProvider): Source of signing keys.
        client_id (str): Must be contained in `aud`.
        issuer (str): Must equal `iss`.
        leeway (int): Acceptable clock skew in seconds.
    """

    def __init__(
        self,
        oidc_provider: OIDCProvider,
        client_id: str,
        issuer: str,
        allowed_algorithms: list[str],
        leeway: int = 60,
        name_claim: str = "name",
    ) -> None:
        """
        Initialize the TokenValidator.

        Args:
            oidc_provider: The OIDCProvider instance to fetch JWKS.
            client_id: The relying party's client id, expected in the `aud` claim.
            issuer: The expected issuer (iss) claim.
            allowed_algorithms: List of allowed JWT signing algorithms. REQUIRED.
            leeway: Acceptable clock skew in seconds. Defaults to 60.
            name_claim: Claim mapped to the principal's display name.
        """
        self.oidc_provider = oidc_provider
        self.client_id = client_id
        self.issuer = issuer
        self.allowed_algorithms = allowed_algorithms
        self.leeway = leeway
        self.mapper = ClaimsMapper(name_claim)
        # Use a specific JsonWebToken instance to enforce allowed algorithms and reject others
        self.jwt = JsonWebToken(self.allowed_algorithms)

    @staticmethod
    def _select_key(snapshot: JwksSnapshot, kid: str | None) -> dict[str, Any] | None:
        if kid:
            return snapshot.keys.get(kid)
        candidates = [*snapshot.keys.values(), *snapshot.unidentified]
        if len(candidates) == 1:
            return candidates[0]
        return None

    async def _resolve_key(self, kid: str | None, span: Span) -> dict[str, Any]:
        """
        Finds the signing key, refreshing the JWKS at most once on a miss.
        """
        snapshot = await self.oidc_provider.get_signing_keys()
        jwk = self._select_key(snapshot, kid)
        if jwk is None:
            # Unknown key id: the provider may have rotated keys
            logger.info(f"Signing key {kid!r} not cached, refreshing JWKS")
            span.add_event("refreshing_jwks")
            snapshot = await self.oidc_provider.refresh_signing_keys(snapshot.generation)
            jwk = self._select_key(snapshot, kid)

        if jwk is None:
            raise InvalidSignatureError(f"No signing key found for kid {kid!r}")
        return jwk

    def _claims_options(self) -> dict[str, Any]:
        return {
            "iss": {"essential": True, "value": self.issuer},
            "aud": {"essential": True, "value": self.client_id},
            "exp": {"essential": True},
            "sub": {"essential": True},
        }

    async def validate(self, token: str, nonce: str) -> dict[str, Any]:
        """
        Validates the ID token signature and claims.

        Emits an OpenTelemetry span `validate_id_token`.

        Args:
            token: The raw ID token string.
            nonce: The nonce issued with the corresponding authorization request.

        Returns:
            dict[str, Any]: The validated claims dictionary.

        Raises:
            InvalidSignatureError: If the signature is invalid or no key matches.
            IssuerMismatchError: If `iss` differs from the configured issuer.
            AudienceMismatchError: If `aud` does not contain the client id.
            ExpiredTokenError: If the token has expired (beyond leeway).
            NonceMismatchError: If `nonce` differs from the issued one.
            InvalidTokenError: If the token is malformed or claims are missing.
            ProviderUnavailableError: If keys cannot be fetched.
        """
        with tracer.start_as_current_span(
            "validate_id_token", record_exception=False, set_status_on_exception=False
        ) as span:
            token = token.strip()
            try:
                header = read_unverified_header(token)
                alg = header.get("alg")
                if alg not in self.allowed_algorithms:
                    raise InvalidSignatureError(f"Signing algorithm {alg!r} is not allowed")

                jwk = await self._resolve_key(header.get("kid"), span)

                try:
                    key = JsonWebKey.import_key(jwk)
                    # Cast self.jwt to Any to bypass MyPy overload confusion or missing stubs
                    claims = cast("Any", self.jwt).decode(token, key, claims_options=self._claims_options())
                    claims.validate(leeway=self.leeway)
                except JoseExpiredTokenError as e:
                    logger.warning("Validation failed: Token expired")
                    raise ExpiredTokenError(f"Token has expired: {e}") from e
                except InvalidClaimError as e:
                    logger.warning("Validation failed: Invalid claim", exc_info=True)
                    claim = getattr(e, "claim_name", "")
                    if claim == "iss":
                        raise IssuerMismatchError(f"Invalid issuer: {e}") from e
                    if claim == "aud":
                        raise AudienceMismatchError(f"Invalid audience: {e}") from e
                    raise InvalidTokenError(f"Invalid claim: {e}") from e
                except MissingClaimError as e:
                    logger.warning("Validation failed: Missing claim", exc_info=True)
                    raise InvalidTokenError(f"Missing claim: {e}") from e
                except BadSignatureError as e:
                    logger.warning("Validation failed: Bad signature", exc_info=True)
                    raise InvalidSignatureError(f"Invalid signature: {e}") from e
                except JoseError as e:
                    logger.warning("Validation failed: JOSE error", exc_info=True)
                    raise InvalidTokenError(f"Token validation failed: {e}") from e
                except ValueError as e:
                    # authlib raises ValueError for unusable key material
                    logger.warning("Validation failed: Unusable signing key", exc_info=True)
                    raise InvalidSignatureError(f"Invalid signing key: {e}") from e

                payload = dict(claims)

                if not hmac.compare_digest(str(payload.get("nonce", "")).encode(), nonce.encode()):
                    logger.warning("Validation failed: Nonce mismatch (possible replay)")
                    raise NonceMismatchError("ID token nonce does not match the login request")

            except AuthenticationError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                raise

            user_hash = anonymize(str(payload.get("sub", "unknown")))
            logger.info(f"ID token validated for user {user_hash}")
            span.set_attribute("enduser.id", user_hash)
            span.set_status(Status(StatusCode.OK))
            return payload

    async def validate_principal(self, token: str, nonce: str, tokens: StoredTokens | None = None) -> Principal:
        """
        Validates the ID token and maps its claims to a `Principal`.
        """
        claims = await self.validate(token, nonce)
        return self.mapper.map_claims(claims, tokens)
