"""
Tests for conversation state, inactivity timers and per-identity locking.
"""

import asyncio

import pytest

from barbershop.config import Settings
from barbershop.flows.booking_flow import BookingStep
from barbershop.sessions import IdentityLocks, SessionStore

CUSTOMER = "573001112233"


@pytest.fixture
def settings(tmp_path):
    # 0.005 minutes is 300 ms
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        shop_name="Test Barbers",
        session_timeout_minutes=0.005,
        seed_staff=False,
    )


class TestSessionStore:
    """Inactivity timers."""

    @pytest.mark.asyncio
    async def test_idle_session_expires(self):
        expired = []

        async def on_expire(identity, state):
            expired.append((identity, state))

        store = SessionStore(0.05, IdentityLocks(), on_expire)
        store.put(CUSTOMER, "state")

        await asyncio.sleep(0.15)

        assert CUSTOMER not in store
        assert expired == [(CUSTOMER, "state")]

    @pytest.mark.asyncio
    async def test_touch_restarts_the_timer(self):
        store = SessionStore(0.2, IdentityLocks())
        store.put(CUSTOMER, "state")

        await asyncio.sleep(0.12)
        store.touch(CUSTOMER)
        await asyncio.sleep(0.12)

        assert store.get(CUSTOMER) == "state"

        await asyncio.sleep(0.3)
        assert CUSTOMER not in store

    @pytest.mark.asyncio
    async def test_touch_records_last_activity(self):
        store = SessionStore(10, IdentityLocks())
        assert store.idle_seconds(CUSTOMER) is None

        store.put(CUSTOMER, "state")
        await asyncio.sleep(0.1)
        assert store.idle_seconds(CUSTOMER) >= 0.09

        store.touch(CUSTOMER)
        assert store.idle_seconds(CUSTOMER) < 0.05
        await store.close()

    @pytest.mark.asyncio
    async def test_delete_cancels_the_timer(self):
        expired = []

        async def on_expire(identity, state):
            expired.append(identity)

        store = SessionStore(0.05, IdentityLocks(), on_expire)
        store.put(CUSTOMER, "state")

        assert store.delete(CUSTOMER) == "state"
        await asyncio.sleep(0.1)

        assert expired == []
        assert store.delete(CUSTOMER) is None

    @pytest.mark.asyncio
    async def test_touch_without_a_session_does_nothing(self):
        store = SessionStore(0.05, IdentityLocks())

        store.touch(CUSTOMER)

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_the_store(self):
        async def on_expire(identity, state):
            raise RuntimeError("messenger down")

        store = SessionStore(0.02, IdentityLocks(), on_expire)
        store.put(CUSTOMER, "state")
        await asyncio.sleep(0.08)

        assert CUSTOMER not in store
        store.put(CUSTOMER, "again")
        assert store.get(CUSTOMER) == "again"
        await store.close()

    @pytest.mark.asyncio
    async def test_close_cancels_everything(self):
        store = SessionStore(10, IdentityLocks())
        store.put("1111111", "a")
        store.put("2222222", "b")

        await store.close()

        assert len(store) == 0


class TestIdentityLocks:
    @pytest.mark.asyncio
    async def test_same_identity_is_serialized(self):
        locks = IdentityLocks()
        order = []

        async def worker(name, delay):
            async with locks.hold(CUSTOMER):
                order.append(f"{name} in")
                await asyncio.sleep(delay)
                order.append(f"{name} out")

        await asyncio.gather(worker("a", 0.03), worker("b", 0))

        assert order == ["a in", "a out", "b in", "b out"]
        assert CUSTOMER not in locks

    @pytest.mark.asyncio
    async def test_different_identities_run_together(self):
        locks = IdentityLocks()
        inside = []

        async def worker(identity):
            async with locks.hold(identity):
                inside.append(identity)
                await asyncio.sleep(0.02)
                return len(inside)

        results = await asyncio.gather(worker("1111111"), worker("2222222"))

        assert results == [2, 2]


class TestConversationTimeout:
    """Timeouts seen from the chat."""

    @pytest.mark.asyncio
    async def test_idle_booking_is_closed_and_greeted_again(self, send, messenger, service):
        await send(CUSTOMER, "hola")
        await send(CUSTOMER, "1")
        await send(CUSTOMER, "Juan Perez")
        await send(CUSTOMER, "staff_barber_alex", kind="selection")
        await send(CUSTOMER, "svc_haircut", kind="selection")
        assert service.sessions.get(CUSTOMER).step == BookingStep.date

        await asyncio.sleep(1.0)

        assert CUSTOMER not in service.sessions
        assert messenger.texts_to(CUSTOMER)[-1].startswith("*Session closed for inactivity*")
        assert not service.dispatcher.is_welcomed(CUSTOMER)

        await send(CUSTOMER, "date_2030-01-17", kind="selection")

        kind, prompt = messenger.last(CUSTOMER)
        assert "Welcome to *Test Barbers*" in prompt.body

    @pytest.mark.asyncio
    async def test_menu_screen_alone_has_no_timer(self, send, messenger, service):
        await send(CUSTOMER, "hola")
        messenger.clear()

        await asyncio.sleep(0.5)

        assert messenger.outbox == []
        assert service.dispatcher.is_welcomed(CUSTOMER)

    @pytest.mark.asyncio
    async def test_admin_session_times_out_too(self, send, messenger, service):
        await send(CUSTOMER, "admin alex 4321")

        await asyncio.sleep(1.0)

        assert CUSTOMER not in service.sessions
        assert messenger.texts_to(CUSTOMER)[-1].startswith("*Session closed for inactivity*")
