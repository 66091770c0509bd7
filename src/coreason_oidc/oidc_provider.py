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
OIDC Provider component for fetching and caching discovery metadata and JWKS.
"""

import time
from typing import Any

import anyio
import httpx
from pydantic import ValidationError

from coreason_oidc.exceptions import OversizedResponseError, ProviderUnavailableError, SecurityError
from coreason_oidc.models_internal import JwksSnapshot, OIDCMetadata
from coreason_oidc.transport import safe_json_fetch
from coreason_oidc.utils.logger import logger


class OIDCProvider:
    """
    Fetches and caches the Identity Provider's discovery document and signing keys.

    The key cache is the only state shared between concurrent logins. Reads of a fresh
    cache take no lock; refreshes are serialized so that at most one fetch is in flight,
    and callers that waited on it reuse its result.

    Attributes:
        discovery_url (str): The OIDC discovery URL.
        cache_ttl (int): The cache time-to-live in seconds.
        refresh_cooldown (float): Minimum seconds between forced refreshes.
    """

    def __init__(
        self,
        discovery_url: str,
        client: httpx.AsyncClient,
        cache_ttl: int = 3600,
        refresh_cooldown: float = 30.0,
    ) -> None:
        """
        Initialize the OIDCProvider.

        Args:
            discovery_url: The OIDC discovery URL (e.g., https://my-tenant.auth0.com/.well-known/openid-configuration).
            client: The async HTTP client to use for requests.
            cache_ttl: Time-to-live for the JWKS cache in seconds. Defaults to 3600 (1 hour).
            refresh_cooldown: Minimum time in seconds between forced refreshes. Defaults to 30.0.
        """
        self.discovery_url = discovery_url
        self.client = client
        self.cache_ttl = cache_ttl
        self.refresh_cooldown = refresh_cooldown
        self._snapshot: JwksSnapshot | None = None
        self._metadata: OIDCMetadata | None = None
        self._last_update: float = 0.0
        self._generation = 0
        self._lock: anyio.Lock | None = None

    async def _fetch_metadata(self) -> OIDCMetadata:
        try:
            data = await safe_json_fetch(self.client, self.discovery_url)
            return OIDCMetadata(**data)
        except (
            httpx.HTTPError,
            OversizedResponseError,
            SecurityError,
            ValidationError,
            ValueError,
            TypeError,
        ) as e:
            logger.error(f"OIDC discovery failed for {self.discovery_url}: {e}")
            raise ProviderUnavailableError(f"Failed to fetch OIDC configuration from {self.discovery_url}") from e

    async def _fetch_jwks(self, jwks_uri: str) -> dict[str, Any]:
        try:
            data = await safe_json_fetch(self.client, jwks_uri)
        except (httpx.HTTPError, OversizedResponseError, SecurityError, ValueError) as e:
            logger.error(f"JWKS fetch failed for {jwks_uri}: {e}")
            raise ProviderUnavailableError(f"Failed to fetch JWKS from {jwks_uri}") from e

        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise ProviderUnavailableError(f"Invalid JWKS document from {jwks_uri}")
        return data

    def _is_fresh(self, now: float) -> bool:
        return self._snapshot is not None and (now - self._last_update) < self.cache_ttl

    def _get_lock(self) -> anyio.Lock:
        if self._lock is None:
            self._lock = anyio.Lock()
        return self._lock

    async def _reload(self) -> JwksSnapshot:
        """
        Fetches discovery and keys. Must be called while holding the lock.
        """
        metadata = await self._fetch_metadata()
        jwks = await self._fetch_jwks(metadata.jwks_uri)

        self._generation += 1
        self._snapshot = JwksSnapshot.from_jwks(jwks, self._generation)
        self._metadata = metadata
        self._last_update = time.time()
        logger.info(f"Loaded {len(self._snapshot.keys)} signing keys (generation {self._generation})")
        return self._snapshot

    async def get_signing_keys(self) -> JwksSnapshot:
        """
        Returns the cached signing keys, loading them if absent or expired.

        Raises:
            ProviderUnavailableError: If fetching fails.
        """
        if self._is_fresh(time.time()):
            return self._snapshot  # type: ignore[return-value]

        async with self._get_lock():
            # Another task may have loaded while we waited
            if self._is_fresh(time.time()):
                return self._snapshot  # type: ignore[return-value]
            return await self._reload()

    async def refresh_signing_keys(self, seen_generation: int) -> JwksSnapshot:
        """
        Forces a reload after a key lookup failed against `seen_generation`.

        If the cache already moved past `seen_generation` (a concurrent refresh completed
        while this caller waited), that result is returned without another fetch.

        Raises:
            ProviderUnavailableError: If fetching fails.
        """
        async with self._get_lock():
            if self._snapshot is not None and self._snapshot.generation != seen_generation:
                return self._snapshot

            if self._snapshot is not None and (time.time() - self._last_update) < self.refresh_cooldown:
                logger.warning("JWKS refresh cooldown active. Returning cached keys despite refresh request.")
                return self._snapshot

            return await self._reload()

    async def get_metadata(self) -> OIDCMetadata:
        """
        Returns the discovery document, loading it together with the keys if needed.
        """
        if self._metadata is None or not self._is_fresh(time.time()):
            await self.get_signing_keys()

        if self._metadata is None:
            raise ProviderUnavailableError("Failed to load OIDC configuration")  # pragma: no cover

        return self._metadata

    async def get_issuer(self) -> str:
        return (await self.get_metadata()).issuer
