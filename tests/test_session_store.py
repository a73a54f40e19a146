"""
Tests for pending sessions and the in-memory session store.
"""

import asyncio

import pytest

from pigeon.models.internal_models import Chain, PendingAction, PendingSession, SendParams
from pigeon.services.session_store import InMemorySessionStore


def make_session(phone="9912345678", action=PendingAction.ONBOARD, created_at=0.0):
    send_params = SendParams(amount="1", recipient="9990001111") if action is PendingAction.SEND else None
    return PendingSession(
        phone=phone,
        action=action,
        chain=Chain.ALGORAND,
        created_at=created_at,
        send_params=send_params
    )


class TestPendingSession:

    def test_send_requires_params(self):
        with pytest.raises(ValueError):
            PendingSession(phone="1", action=PendingAction.SEND, chain=Chain.SOLANA, created_at=0.0)

    def test_expiry_boundary(self):
        session = make_session(created_at=100.0)

        assert not session.is_expired(400.0, 300.0)
        assert session.is_expired(400.001, 300.0)


class TestInMemorySessionStore:

    @pytest.mark.asyncio
    async def test_get_and_clear_consumes(self):
        store = InMemorySessionStore()
        session = make_session()
        await store.set("9912345678", session)

        assert await store.get_and_clear("9912345678") is session
        assert await store.get_and_clear("9912345678") is None

    @pytest.mark.asyncio
    async def test_set_replaces(self):
        store = InMemorySessionStore()
        await store.set("9912345678", make_session(action=PendingAction.ONBOARD))
        await store.set("9912345678", make_session(action=PendingAction.SEND))

        session = await store.get_and_clear("9912345678")
        assert session.action is PendingAction.SEND
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_sessions_are_per_phone(self):
        store = InMemorySessionStore()
        await store.set("1111111111", make_session(phone="1111111111"))

        assert await store.get_and_clear("2222222222") is None
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_concurrent_consumers_get_one_session(self):
        store = InMemorySessionStore()
        await store.set("9912345678", make_session())

        results = await asyncio.gather(*(store.get_and_clear("9912345678") for _ in range(5)))

        assert sum(result is not None for result in results) == 1

