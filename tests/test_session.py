# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

from typing import Any

import anyio
import pytest
from pydantic import SecretStr

from coreason_oidc.models import Principal, StoredTokens
from coreason_oidc.session import ContextSessionStore, MemorySessionStore, SessionStore


def make_principal(subject: str = "auth0|alice") -> Principal:
    return Principal(
        subject=subject,
        name="Alice",
        claims={"sub": subject},
        tokens=StoredTokens(access_token=SecretStr("at")),
    )


def test_stores_satisfy_protocol() -> None:
    assert isinstance(ContextSessionStore(), SessionStore)
    assert isinstance(MemorySessionStore("sid"), SessionStore)


class TestContextSessionStore:
    def test_set_get_clear(self) -> None:
        store = ContextSessionStore()
        store.clear()
        assert store.get() is None

        principal = make_principal()
        store.set(principal)
        assert store.get() == principal

        store.clear()
        store.clear()
        assert store.get() is None

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self) -> None:
        seen: dict[str, str | None] = {}

        async def request(subject: str) -> None:
            store = ContextSessionStore()
            store.set(make_principal(subject))
            await anyio.sleep(0.01)
            current = store.get()
            seen[subject] = current.subject if current else None

        async with anyio.create_task_group() as tg:
            tg.start_soon(request, "user-a")
            tg.start_soon(request, "user-b")

        assert seen == {"user-a": "user-a", "user-b": "user-b"}


class TestMemorySessionStore:
    def test_round_trip_through_backend(self) -> None:
        backend: dict[str, dict[str, Any]] = {}
        MemorySessionStore("sid-1", backend).set(make_principal())

        assert backend["sid-1"]["subject"] == "auth0|alice"
        restored = MemorySessionStore("sid-1", backend).get()
        assert restored is not None
        assert restored.access_token == "at"

    def test_sessions_are_separate(self) -> None:
        backend: dict[str, dict[str, Any]] = {}
        MemorySessionStore("sid-1", backend).set(make_principal())
        assert MemorySessionStore("sid-2", backend).get() is None

    def test_clear_is_idempotent(self) -> None:
        store = MemorySessionStore("sid-1")
        store.clear()
        store.set(make_principal())
        store.clear()
        store.clear()
        assert store.get() is None
