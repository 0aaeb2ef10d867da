# tests/test_sessions.py
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from mcp_ledger.sessions import InMemorySessionStore, SessionManager, TransportState


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


def _manager(clock: FakeClock) -> SessionManager:
    return SessionManager(InMemorySessionStore(), grace_seconds=45, sweep_interval_seconds=15, clock=clock)


def test_reconnect_within_grace_resumes_the_same_session(clock):
    async def scenario():
        manager = _manager(clock)
        first, resumed_first = await manager.bind("user-1", "bearer", "fp-1")
        await manager.release(first.session_id)
        clock.advance(30)
        second, resumed_second = await manager.bind("user-1", "bearer", "fp-1")
        return first, resumed_first, second, resumed_second

    first, resumed_first, second, resumed_second = asyncio.run(scenario())
    assert resumed_first is False
    assert resumed_second is True
    assert second.session_id == first.session_id
    assert second.transport_state == TransportState.CONNECTED
    assert second.disconnected_at is None


def test_reconnect_after_grace_starts_a_new_session(clock):
    async def scenario():
        manager = _manager(clock)
        first, _ = await manager.bind("user-1", "bearer", "fp-1")
        await manager.release(first.session_id)
        clock.advance(46)
        second, resumed = await manager.bind("user-1", "bearer", "fp-1")
        return first, second, resumed

    first, second, resumed = asyncio.run(scenario())
    assert resumed is False
    assert second.session_id != first.session_id


def test_other_credentials_never_resume_a_session(clock):
    async def scenario():
        manager = _manager(clock)
        first, _ = await manager.bind("user-1", "bearer", "fp-1")
        await manager.release(first.session_id)
        other_token, _ = await manager.bind("user-1", "bearer", "fp-2")
        other_user, _ = await manager.bind("user-2", "bearer", "fp-1")
        return first, other_token, other_user

    first, other_token, other_user = asyncio.run(scenario())
    assert other_token.session_id != first.session_id
    assert other_user.session_id != first.session_id


def test_session_stays_connected_while_any_connection_is_open(clock):
    async def scenario():
        manager = _manager(clock)
        session, _ = await manager.bind("user-1", "oauth", "fp-1")
        await manager.bind("user-1", "oauth", "fp-1")
        after_one = await manager.release(session.session_id)
        after_two = await manager.release(session.session_id)
        return after_one, after_two

    after_one, after_two = asyncio.run(scenario())
    assert after_one.active_connections == 1
    assert after_one.transport_state == TransportState.CONNECTED
    assert after_two.transport_state == TransportState.DISCONNECTED
    assert after_two.disconnected_at == datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


def test_sweep_only_reaps_sessions_past_the_grace_window(clock):
    async def scenario():
        manager = _manager(clock)
        old, _ = await manager.bind("user-1", "bearer", "fp-old")
        await manager.release(old.session_id)
        clock.advance(40)
        recent, _ = await manager.bind("user-2", "bearer", "fp-recent")
        await manager.release(recent.session_id)
        live, _ = await manager.bind("user-3", "bearer", "fp-live")
        clock.advance(10)
        reaped = await manager.sweep_expired()
        return (
            reaped,
            await manager.get(old.session_id),
            await manager.get(recent.session_id),
            await manager.get(live.session_id),
        )

    reaped, old, recent, live = asyncio.run(scenario())
    assert reaped == 1
    assert old is None
    assert recent is not None
    assert live is not None


def test_sweeper_starts_and_stops(clock):
    async def scenario():
        manager = SessionManager(InMemorySessionStore(), grace_seconds=0, sweep_interval_seconds=0.01, clock=clock)
        session, _ = await manager.bind("user-1", "bearer", "fp-1")
        await manager.release(session.session_id)
        clock.advance(1)
        manager.start_sweeper()
        for _ in range(50):
            if await manager.get(session.session_id) is None:
                break
            await asyncio.sleep(0.01)
        await manager.stop_sweeper()
        return await manager.get(session.session_id)

    assert asyncio.run(scenario()) is None


def test_manager_requires_a_session_store():
    with pytest.raises(TypeError):
        SessionManager(object())


def test_sweep_runs_housekeeping_tasks_even_when_one_fails(clock):
    calls = []

    async def broken_cleanup() -> int:
        calls.append("broken")
        raise RuntimeError("table locked")

    async def cleanup() -> int:
        calls.append("cleanup")
        return 3

    async def scenario():
        manager = SessionManager(
            InMemorySessionStore(), grace_seconds=45, sweep_interval_seconds=15, clock=clock,
            housekeeping=[broken_cleanup, cleanup],
        )
        return await manager.sweep_expired()

    assert asyncio.run(scenario()) == 0
    assert calls == ["broken", "cleanup"]
