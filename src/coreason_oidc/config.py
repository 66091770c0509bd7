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
Configuration for the coreason-oidc package.
"""

from typing import Annotated, Any
from urllib.parse import urlparse

from pydantic import Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from coreason_oidc.exceptions import ConfigError


def _normalize_domain(v: str) -> str:
    v = v.strip().lower()
    if "://" not in v:
        v = f"https://{v}"
    return urlparse(v).netloc


class ClientConfig(BaseSettings):
    """
    Relying-party settings, loaded once at startup and immutable afterwards.

    Attributes:
        domain (str): The domain of the Identity Provider (e.g. tenant.auth0.com).
        issuer (str): The expected issuer URL. Defaults to https://{domain}/.
        client_id (str): The OIDC Client ID registered with the provider.
        client_secret (SecretStr | None): Client secret, confidential clients only.
        redirect_uri (str): Absolute callback URL registered with the provider.
        post_logout_redirect_uri (str | None): Where the provider sends the browser after logout.
        scopes (list[str]): Requested scopes.
        audience (str | None): API audience; requesting one yields an access token for that API.
        name_claim (str): Claim used as the principal's display name.
        clock_skew_leeway (int): Acceptable clock skew in seconds for `exp`.
        state_secret (SecretStr | None): Key used to sign pending-login records.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_OIDC_",
        case_sensitive=False,
        frozen=True,
    )

    domain: str
    issuer: str = ""
    client_id: str
    client_secret: SecretStr | None = None
    redirect_uri: str
    post_logout_redirect_uri: str | None = None
    scopes: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["openid", "profile", "email"])
    audience: str | None = None
    name_claim: str = "name"
    clock_skew_leeway: int = Field(default=60, ge=0, le=300)
    allowed_algorithms: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["RS256"])
    http_timeout: float = Field(default=10.0, gt=0, le=10, description="Timeout in seconds for IdP calls.")
    pending_login_ttl: int = Field(default=600, gt=0)
    state_secret: SecretStr | None = None
    use_pkce: bool = True
    save_tokens: bool = False
    jwks_cache_ttl: int = Field(default=3600, gt=0)
    jwks_refresh_cooldown: float = Field(default=30.0, ge=0)
    unsafe_local_dev: bool = False

    @model_validator(mode="before")
    @classmethod
    def set_default_issuer(cls, data: Any) -> Any:
        """
        Derives the issuer from the domain if not provided.
        """
        if isinstance(data, dict) and not data.get("issuer") and data.get("domain"):
            host = _normalize_domain(str(data["domain"]))
            if host:
                data = dict(data)
                data["issuer"] = f"https://{host}/"
        return data

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, v: str) -> str:
        """
        Ensures domain is just the hostname (e.g. tenant.auth0.com).
        Strips scheme and path if present.
        """
        host = _normalize_domain(v)
        if not host:
            raise ValueError("domain must name the identity provider host")
        return host

    @model_validator(mode="after")
    def validate_https(self) -> "ClientConfig":
        """
        Ensures that issuer uses HTTPS, unless strictly opted out for local dev.
        """
        if not self.issuer.strip().strip("/"):
            raise ValueError("issuer must not be empty")
        if self.issuer.startswith("http://") and not self.unsafe_local_dev:
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return self

    @field_validator("client_id", "redirect_uri")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("redirect_uri")
    @classmethod
    def require_absolute_redirect(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("redirect_uri must be an absolute http(s) URL registered with the provider")
        return v

    @field_validator("scopes", "allowed_algorithms", mode="before")
    @classmethod
    def split_list(cls, v: Any) -> Any:
        """Accepts space- or comma-separated strings (as found in env vars)."""
        if isinstance(v, str):
            return [item for item in v.replace(",", " ").split() if item]
        return v

    @field_validator("scopes")
    @classmethod
    def require_openid_scope(cls, v: list[str]) -> list[str]:
        if "openid" not in v:
            return ["openid", *v]
        return v

    @property
    def scope(self) -> str:
        """Space-delimited scope string as sent to the provider."""
        return " ".join(self.scopes)

    @property
    def issuer_base(self) -> str:
        """Issuer with exactly one trailing slash, for joining endpoint paths."""
        return self.issuer.rstrip("/") + "/"


def load_config(**overrides: Any) -> ClientConfig:
    """
    Loads `ClientConfig` from the environment (and keyword overrides).

    Raises:
        ConfigError: If required settings are missing or invalid.
    """
    try:
        return ClientConfig(**overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid relying-party configuration: {e}") from e
