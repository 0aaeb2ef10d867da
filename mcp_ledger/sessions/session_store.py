# mcp_ledger/sessions/session_store.py
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set

import redis.asyncio as aioredis

from ..settings import settings
from .session_data import SessionData, TransportState

logger = logging.getLogger(__name__)


class AbstractSessionStore(ABC):
    """Interface for session persistence used by the SessionManager."""

    @abstractmethod
    async def load_session(self, session_id: str) -> Optional[SessionData]:
        pass

    @abstractmethod
    async def save_session(self, session_data: SessionData) -> None:
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def find_by_fingerprint(self, credential_fingerprint: str) -> List[SessionData]:
        pass

    @abstractmethod
    async def list_disconnected(self) -> List[SessionData]:
        """Sessions with no live transport; the sweeper only ever scans these."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass


class InMemorySessionStore(AbstractSessionStore):
    """Process-local session store (SESSION_BACKEND=memory)."""

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionData] = {}
        self._by_fingerprint: Dict[str, Set[str]] = {}
        self._disconnected: Set[str] = set()

    async def initialize(self) -> None:
        logger.info("InMemorySessionStore initialized.")

    async def teardown(self) -> None:
        self._sessions.clear()
        self._by_fingerprint.clear()
        self._disconnected.clear()
        logger.info("InMemorySessionStore cleared.")

    async def ping(self) -> bool:
        return True

    async def load_session(self, session_id: str) -> Optional[SessionData]:
        session = self._sessions.get(session_id)
        # Hand out copies so callers never mutate stored state without saving
        return session.model_copy(deep=True) if session else None

    async def save_session(self, session_data: SessionData) -> None:
        stored = session_data.model_copy(deep=True)
        self._sessions[stored.session_id] = stored
        self._by_fingerprint.setdefault(stored.credential_fingerprint, set()).add(stored.session_id)
        if stored.transport_state == TransportState.DISCONNECTED:
            self._disconnected.add(stored.session_id)
        else:
            self._disconnected.discard(stored.session_id)

    async def delete_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        self._disconnected.discard(session_id)
        if session:
            ids = self._by_fingerprint.get(session.credential_fingerprint)
            if ids is not None:
                ids.discard(session_id)
                if not ids:
                    del self._by_fingerprint[session.credential_fingerprint]

    async def find_by_fingerprint(self, credential_fingerprint: str) -> List[SessionData]:
        ids = self._by_fingerprint.get(credential_fingerprint, set())
        return [self._sessions[i].model_copy(deep=True) for i in ids if i in self._sessions]

    async def list_disconnected(self) -> List[SessionData]:
        return [self._sessions[i].model_copy(deep=True) for i in list(self._disconnected) if i in self._sessions]


class RedisGatewaySessionStore(AbstractSessionStore):
    """
    Redis-backed session store (SESSION_BACKEND=redis) so several gateway
    processes can resume each other's sessions.

    Keys:
        ledger:session:{session_id}         JSON-serialized SessionData (with TTL)
        ledger:session_fp:{fingerprint}     set of session ids for one credential
        ledger:sessions:disconnected        set of session ids awaiting the sweeper
    """

    SESSION_TTL_SECONDS: int = 3600 * 24
    KEY_PREFIX = "ledger:session"
    DISCONNECTED_KEY = "ledger:sessions:disconnected"

    def __init__(self, session_ttl_seconds: Optional[int] = None, client: Optional[aioredis.Redis] = None):
        if session_ttl_seconds is not None:
            self.SESSION_TTL_SECONDS = session_ttl_seconds
        self._redis_client: Optional[aioredis.Redis] = client
        logger.info(f"RedisGatewaySessionStore created. Session TTL: {self.SESSION_TTL_SECONDS}s")

    def _session_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}:{session_id}"

    def _fingerprint_key(self, fingerprint: str) -> str:
        return f"{self.KEY_PREFIX}_fp:{fingerprint}"

    async def initialize(self) -> None:
        if self._redis_client:
            logger.warning("Redis client already initialized. Skipping re-initialization.")
            return

        connection_params = {
            "host": settings.redis_host,
            "port": settings.redis_port,
            "db": settings.redis_db,
            "ssl": settings.redis_ssl,
            "decode_responses": False,
        }
        if settings.redis_password:
            connection_params["password"] = settings.redis_password

        logger.info(
            f"Connecting to Redis at {connection_params['host']}:"
            f"{connection_params['port']}, DB: {connection_params['db']}"
        )
        try:
            self._redis_client = aioredis.Redis(**connection_params)
            await self._redis_client.ping()
            logger.info("Successfully connected to Redis and pinged.")
        except aioredis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            self._redis_client = None
            raise

    async def teardown(self) -> None:
        if self._redis_client:
            logger.info("Closing Redis connection.")
            await self._redis_client.aclose()
            self._redis_client = None
            logger.info("Redis connection closed.")

    async def _get_client(self) -> aioredis.Redis:
        if not self._redis_client:
            raise RuntimeError("RedisGatewaySessionStore not initialized. Call initialize() first.")
        return self._redis_client

    async def ping(self) -> bool:
        client = await self._get_client()
        return bool(await client.ping())

    @staticmethod
    def _decode(raw: Optional[bytes]) -> Optional[SessionData]:
        if not raw:
            return None
        try:
            return SessionData.model_validate_json(raw.decode("utf-8"))
        except ValueError as e:
            logger.error(f"Error deserializing session from Redis: {e}", exc_info=True)
            return None

    async def load_session(self, session_id: str) -> Optional[SessionData]:
        client = await self._get_client()
        return self._decode(await client.get(self._session_key(session_id)))

    async def save_session(self, session_data: SessionData) -> None:
        client = await self._get_client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.set(
                self._session_key(session_data.session_id),
                session_data.model_dump_json().encode("utf-8"),
                ex=self.SESSION_TTL_SECONDS,
            )
            fp_key = self._fingerprint_key(session_data.credential_fingerprint)
            pipe.sadd(fp_key, session_data.session_id)
            pipe.expire(fp_key, self.SESSION_TTL_SECONDS)
            if session_data.transport_state == TransportState.DISCONNECTED:
                pipe.sadd(self.DISCONNECTED_KEY, session_data.session_id)
            else:
                pipe.srem(self.DISCONNECTED_KEY, session_data.session_id)
            await pipe.execute()
        logger.debug(f"Saved session {session_data.session_id} ({session_data.transport_state.value}).")

    async def delete_session(self, session_id: str) -> None:
        client = await self._get_client()
        session = await self.load_session(session_id)
        async with client.pipeline(transaction=True) as pipe:
            pipe.delete(self._session_key(session_id))
            pipe.srem(self.DISCONNECTED_KEY, session_id)
            if session:
                pipe.srem(self._fingerprint_key(session.credential_fingerprint), session_id)
            await pipe.execute()
        logger.info(f"Session {session_id} deleted from Redis.")

    async def _load_many(self, ids: List[bytes]) -> List[SessionData]:
        if not ids:
            return []
        client = await self._get_client()
        keys = [self._session_key(i.decode("utf-8")) for i in ids]
        raws = await client.mget(keys)
        return [s for s in (self._decode(raw) for raw in raws) if s is not None]

    async def find_by_fingerprint(self, credential_fingerprint: str) -> List[SessionData]:
        client = await self._get_client()
        ids = await client.smembers(self._fingerprint_key(credential_fingerprint))
        return await self._load_many(list(ids))

    async def list_disconnected(self) -> List[SessionData]:
        client = await self._get_client()
        ids = list(await client.smembers(self.DISCONNECTED_KEY))
        sessions = await self._load_many(ids)
        live = {s.session_id for s in sessions}
        stale = [i for i in ids if i.decode("utf-8") not in live]
        if stale:
            # Session keys that expired through TTL leave their id behind
            await client.srem(self.DISCONNECTED_KEY, *stale)
        return sessions


def create_session_store() -> AbstractSessionStore:
    """Build the store selected by SESSION_BACKEND."""
    backend = settings.session_backend.lower()
    if backend == "memory":
        return InMemorySessionStore()
    if backend == "redis":
        return RedisGatewaySessionStore()
    raise ValueError(f"Unsupported session_backend: {settings.session_backend}")
