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
Session Store Adapter: how the core persists the authenticated Principal.

The host application supplies the real implementation (cookie, server-side cache).
"""

from contextvars import ContextVar
from typing import Any, Protocol, runtime_checkable

from coreason_oidc.models import Principal


@runtime_checkable
class SessionStore(Protocol):
    """Capability to keep a Principal for the current request/response exchange."""

    def set(self, principal: Principal) -> None:
        """Stores the principal, replacing any previous one."""
        ...

    def get(self) -> Principal | None:
        """Returns the stored principal, or None when unauthenticated."""
        ...

    def clear(self) -> None:
        """Removes the principal. Must succeed when nothing is stored."""
        ...


# ContextVar to store the current principal.
# Default is None.
_current_principal: ContextVar[Principal | None] = ContextVar("current_principal", default=None)


class ContextSessionStore:
    """
    Request-scoped store backed by a ContextVar.

    Useful for middleware that loads the principal from a cookie at the start of a
    request and writes it back at the end.
    """

    def set(self, principal: Principal) -> None:
        _current_principal.set(principal)

    def get(self) -> Principal | None:
        return _current_principal.get()

    def clear(self) -> None:
        _current_principal.set(None)


class MemorySessionStore:
    """
    Server-side store keyed by a session id.

    Principals are kept in their session-dict form, as a cache or database backend would.
    Not suitable for distributed systems.
    """

    def __init__(self, session_id: str, backend: dict[str, dict[str, Any]] | None = None) -> None:
        self.session_id = session_id
        self._backend = backend if backend is not None else {}

    def set(self, principal: Principal) -> None:
        self._backend[self.session_id] = principal.to_session()

    def get(self) -> Principal | None:
        data = self._backend.get(self.session_id)
        return Principal.from_session(data) if data is not None else None

    def clear(self) -> None:
        self._backend.pop(self.session_id, None)
