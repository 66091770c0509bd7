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
Storage for login attempts between the challenge redirect and the provider callback.
"""

import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, cast

from authlib.jose import JsonWebToken
from authlib.jose.errors import JoseError
from pydantic import ValidationError

from coreason_oidc.exceptions import UnknownStateError
from coreason_oidc.models_internal import PendingLogin
from coreason_oidc.utils.logger import logger


class PendingLoginStore(Protocol):
    """Protocol for the per-attempt record store."""

    def put(self, state: str, value: str, ttl: int) -> None:
        """Stores `value` under `state` for at most `ttl` seconds."""
        ...

    def consume(self, state: str) -> str | None:
        """
        Atomically removes and returns the value for `state`.
        Returns None if absent or expired. A value is returned at most once.
        """
        ...


class MemoryPendingLoginStore:
    """
    In-memory implementation of PendingLoginStore.
    Uses a dictionary with lazy cleanup: expired entries at the head of the insertion
    order are dropped on each put, others when looked up or evicted.
    Not suitable for distributed systems.
    """

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _purge(self, now: float) -> None:
        # Insertion order; stops at the first live entry
        while self._entries:
            state, (_, deadline) = next(iter(self._entries.items()))
            if deadline > now:
                break
            del self._entries[state]

    def put(self, state: str, value: str, ttl: int) -> None:
        now = self._clock()
        with self._lock:
            self._purge(now)
            while len(self._entries) >= self.max_entries:
                # Oldest first; dicts keep insertion order
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.warning("Pending login store full, evicted oldest login attempt")
            self._entries[state] = (value, now + ttl)

    def consume(self, state: str) -> str | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.pop(state, None)
        if entry is None:
            return None
        value, deadline = entry
        if deadline <= now:
            return None
        return value

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PendingLoginSigner:
    """
    Makes pending-login records tamper-evident: HS256 JWS with an `exp` claim.
    """

    def __init__(self, secret: bytes) -> None:
        self._key = secret
        self._jwt = JsonWebToken(["HS256"])

    def sign(self, record: PendingLogin) -> str:
        blob = cast("Any", self._jwt).encode({"alg": "HS256"}, record.model_dump(exclude_none=True), self._key)
        return cast(bytes, blob).decode("ascii")

    def verify(self, blob: str) -> PendingLogin:
        """
        Raises:
            UnknownStateError: If the record was altered, signed with another key, or expired.
        """
        try:
            claims = cast("Any", self._jwt).decode(blob, self._key, claims_options={"exp": {"essential": True}})
            claims.validate()
            return PendingLogin(**dict(claims))
        except (JoseError, ValueError, ValidationError) as e:
            logger.warning(f"Pending login record rejected: {type(e).__name__}")
            raise UnknownStateError("Login attempt is unknown or has expired") from e
