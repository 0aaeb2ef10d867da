# mcp_ledger/sessions/session_manager.py
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence, Tuple
from uuid import uuid4

from .session_data import SessionData, TransportState
from .session_store import AbstractSessionStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
# Extra cleanup run on every sweep, e.g. purging expired OAuth flows
HousekeepingTask = Callable[[], Awaitable[int]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """
    Owns the session lifecycle: create, bind/resume on connect, release on
    disconnect, and reaping once the grace window has elapsed.

    Reaping happens in a background task (`start_sweeper`) so request
    handling never scans idle sessions.
    """

    def __init__(
        self,
        store: AbstractSessionStore,
        *,
        grace_seconds: float = 45,
        sweep_interval_seconds: float = 15,
        clock: Clock = _utcnow,
        housekeeping: Sequence[HousekeepingTask] = (),
    ):
        if not isinstance(store, AbstractSessionStore):
            raise TypeError("SessionManager requires an instance of AbstractSessionStore.")
        self.store = store
        self.grace_seconds = grace_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self.housekeeping = list(housekeeping)
        self._lock = asyncio.Lock()
        self._sweeper_task: Optional[asyncio.Task] = None
        logger.info(
            f"SessionManager initialized with store {type(store).__name__}, "
            f"grace={grace_seconds}s, sweep every {sweep_interval_seconds}s."
        )

    async def get(self, session_id: str) -> Optional[SessionData]:
        return await self.store.load_session(session_id)

    async def create(self, user_id: str, auth_method: str, credential_fingerprint: str) -> SessionData:
        now = self._clock()
        session = SessionData(
            session_id=uuid4().hex,
            user_id=user_id,
            auth_method=auth_method,
            credential_fingerprint=credential_fingerprint,
            established_at=now,
            last_activity_at=now,
        )
        await self.store.save_session(session)
        logger.info(f"Created session {session.session_id} for user {user_id} via {auth_method}.")
        return session

    async def touch(self, session_id: str) -> Optional[SessionData]:
        session = await self.store.load_session(session_id)
        if session is None:
            return None
        session.touch(self._clock())
        await self.store.save_session(session)
        return session

    async def resume(self, user_id: str, credential_fingerprint: str) -> Optional[SessionData]:
        """
        Find a session for the same credential that is still connected or
        disconnected for less than the grace window.
        """
        now = self._clock()
        candidates = [
            s for s in await self.store.find_by_fingerprint(credential_fingerprint)
            if s.user_id == user_id and s.within_grace(self.grace_seconds, now)
        ]
        if not candidates:
            return None
        session = max(candidates, key=lambda s: s.last_activity_at)
        logger.info(f"Resuming session {session.session_id} for user {user_id}.")
        return session

    async def bind(self, user_id: str, auth_method: str, credential_fingerprint: str) -> Tuple[SessionData, bool]:
        """
        Attach a new transport connection to a session, resuming one within
        the grace window or creating a fresh one.

        Returns:
            (session, resumed)
        """
        async with self._lock:
            session = await self.resume(user_id, credential_fingerprint)
            resumed = session is not None
            if session is None:
                session = await self.create(user_id, auth_method, credential_fingerprint)
            now = self._clock()
            session.active_connections += 1
            session.transport_state = TransportState.CONNECTED
            session.disconnected_at = None
            session.touch(now)
            await self.store.save_session(session)
            return session, resumed

    async def release(self, session_id: str) -> Optional[SessionData]:
        """Detach one transport connection; the grace timer starts when none remain."""
        async with self._lock:
            session = await self.store.load_session(session_id)
            if session is None:
                return None
            now = self._clock()
            session.active_connections = max(0, session.active_connections - 1)
            session.touch(now)
            if session.active_connections == 0:
                session.transport_state = TransportState.DISCONNECTED
                session.disconnected_at = now
                logger.debug(f"Session {session_id} disconnected; grace window of {self.grace_seconds}s started.")
            await self.store.save_session(session)
            return session

    async def expire(self, session_id: str) -> None:
        await self.store.delete_session(session_id)
        logger.info(f"Session {session_id} expired.")

    async def sweep_expired(self) -> int:
        """Delete disconnected sessions whose grace window has elapsed."""
        now = self._clock()
        reaped = 0
        async with self._lock:
            for session in await self.store.list_disconnected():
                if session.transport_state != TransportState.DISCONNECTED:
                    continue
                if not session.within_grace(self.grace_seconds, now):
                    await self.store.delete_session(session.session_id)
                    reaped += 1
        if reaped:
            logger.info(f"Session sweep reaped {reaped} expired sessions.")
        await self._run_housekeeping()
        return reaped

    async def _run_housekeeping(self) -> None:
        for task in self.housekeeping:
            try:
                removed = await task()
            except Exception:
                logger.error(f"Housekeeping task {getattr(task, '__qualname__', task)} failed.", exc_info=True)
                continue
            if removed:
                logger.debug(f"Housekeeping task {getattr(task, '__qualname__', task)} removed {removed} rows.")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep_expired()
            except Exception:
                # Keep sweeping; a transient store failure must not stop the loop
                logger.error("Session sweep failed.", exc_info=True)

    def start_sweeper(self) -> None:
        if self._sweeper_task is None or self._sweeper_task.done():
            self._sweeper_task = asyncio.create_task(self._sweep_loop(), name="session-sweeper")
            logger.info("Session sweeper started.")

    async def stop_sweeper(self) -> None:
        task, self._sweeper_task = self._sweeper_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Session sweeper stopped.")
