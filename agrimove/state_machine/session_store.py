"""
Session Store

Holds in-flight conversations keyed by session id. Sessions are scratch
state: anything durable (an order) is written through the catalog gateway
before a conversation reaches a terminal state, so losing the store on
restart only restarts conversations at WELCOME.

Two backends:
- InMemorySessionStore: process-local dict, asyncio.Lock per session id
- RedisSessionStore: JSON documents with a TTL, Redis lock per session id
"""
import asyncio
import threading
import time
import weakref
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import LockError, LockNotOwnedError

from agrimove.core.config import settings
from agrimove.core.exceptions import SessionBusyError
from agrimove.core.logging import get_logger
from agrimove.core.validation import PhoneNumberValidator
from agrimove.state_machine.session import Session

logger = get_logger(__name__)


class BaseSessionStore(ABC):
    """Interface shared by the session backends"""

    def __init__(
        self,
        timeout_seconds: int = 300,
        lock_timeout_seconds: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self.timeout_seconds = timeout_seconds
        self.lock_timeout_seconds = lock_timeout_seconds
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def is_expired(self, session: Session, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return session.idle_seconds(now) > self.timeout_seconds

    def _new_session(self, phone_number: str, session_id: str, channel: str) -> Session:
        now = self._clock()
        return Session(
            session_id=session_id,
            phone_number=phone_number,
            channel=channel,
            created_at=now,
            last_activity=now,
        )

    @abstractmethod
    async def get_or_create(
        self, phone_number: str, session_id: str, channel: str = "ussd"
    ) -> Session:
        """Live session for ``session_id`` with refreshed activity, or a new one"""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        """Live session without touching its activity timestamp (diagnostics)"""

    @abstractmethod
    async def save(self, session: Session) -> None:
        """Persist mutations made during a turn"""

    @abstractmethod
    async def end(self, session_id: str) -> None:
        """Remove the session if present; idempotent"""

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Remove every expired session and return how many were removed"""

    @abstractmethod
    async def count(self) -> int:
        """Number of live sessions"""

    @abstractmethod
    def lock(self, session_id: str):
        """Async context manager giving exclusive access to one session id"""

    async def end_session(self, session: Session) -> None:
        """End ``session`` and mark it so the turn does not save it back"""
        session.ended = True
        await self.end(session.session_id)

    @asynccontextmanager
    async def session(
        self, phone_number: str, session_id: str, channel: str = "ussd"
    ) -> AsyncIterator[Session]:
        """
        Run one turn against a session.

        Takes the session lock, loads or creates the session and saves it on
        a clean exit unless the turn ended it. An exception inside the block
        skips the save.
        """
        async with self.lock(session_id):
            session = await self.get_or_create(phone_number, session_id, channel)
            yield session
            if not session.ended:
                await self.save(session)


class InMemorySessionStore(BaseSessionStore):
    """Process-local store; the default backend"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._sessions: dict[str, Session] = {}
        # Locks live only while some turn (or the sweeper) holds a reference
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._lock_for(session_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout_seconds)
        except asyncio.TimeoutError:
            raise SessionBusyError(session_id, self.lock_timeout_seconds)
        try:
            yield
        finally:
            lock.release()

    async def get_or_create(
        self, phone_number: str, session_id: str, channel: str = "ussd"
    ) -> Session:
        now = self._clock()
        session = self._sessions.get(session_id)

        if session is not None and self.is_expired(session, now):
            logger.info(
                "Session expired, starting fresh",
                extra_data={
                    "session_id": session_id,
                    "idle_seconds": round(session.idle_seconds(now), 1),
                }
            )
            del self._sessions[session_id]
            session = None

        if session is None:
            session = self._new_session(phone_number, session_id, channel)
            self._sessions[session_id] = session
            logger.debug(
                "Session created",
                extra_data={
                    "session_id": session_id,
                    "phone": PhoneNumberValidator.mask(phone_number),
                    "channel": channel,
                }
            )
        else:
            session.last_activity = now

        return session

    async def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is None or self.is_expired(session):
            return None
        return session

    async def save(self, session: Session) -> None:
        self._sessions[session.session_id] = session

    async def end(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.debug("Session ended", extra_data={"session_id": session_id})

    async def sweep_expired(self) -> int:
        now = self._clock()
        candidates = [
            sid for sid, session in self._sessions.items()
            if self.is_expired(session, now)
        ]

        removed = 0
        for session_id in candidates:
            try:
                async with self.lock(session_id):
                    # A turn may have refreshed it while we waited for the lock
                    session = self._sessions.get(session_id)
                    if session is not None and self.is_expired(session):
                        del self._sessions[session_id]
                        removed += 1
            except SessionBusyError:
                logger.debug(
                    "Skipping busy session during sweep",
                    extra_data={"session_id": session_id}
                )

        if removed:
            logger.info(
                "Expired sessions swept",
                extra_data={"removed": removed, "remaining": len(self._sessions)}
            )
        return removed

    async def count(self) -> int:
        return len(self._sessions)


class RedisSessionStore(BaseSessionStore):
    """
    Redis-backed store for multi-process deployments.

    Each session is a JSON document whose TTL equals the session timeout,
    so Redis performs expiry and sweep_expired has nothing to do.
    """

    KEY_PREFIX = "agrimove:session:"
    LOCK_PREFIX = "agrimove:session-lock:"

    def __init__(self, client: Optional[aioredis.Redis] = None, **kwargs):
        super().__init__(**kwargs)
        self._client = client

    async def _redis(self) -> aioredis.Redis:
        if self._client is None:
            from agrimove.core.redis_client import get_redis
            self._client = await get_redis()
        return self._client

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        client = await self._redis()
        # Auto-release guards against a crashed worker holding the lock forever
        lock = client.lock(
            f"{self.LOCK_PREFIX}{session_id}",
            timeout=max(30.0, self.lock_timeout_seconds * 3),
            blocking_timeout=self.lock_timeout_seconds,
        )
        try:
            acquired = await lock.acquire()
        except LockError as e:
            logger.warning(
                "Session lock error",
                extra_data={"session_id": session_id, "error": str(e)}
            )
            raise SessionBusyError(session_id, self.lock_timeout_seconds) from e
        if not acquired:
            raise SessionBusyError(session_id, self.lock_timeout_seconds)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockNotOwnedError:
                logger.warning(
                    "Session lock expired before release",
                    extra_data={"session_id": session_id}
                )

    async def _load(self, session_id: str) -> Optional[Session]:
        client = await self._redis()
        raw = await client.get(self._key(session_id))
        if raw is None:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError:
            logger.warning(
                "Discarding unreadable session document",
                extra_data={"session_id": session_id}
            )
            return None

    async def get_or_create(
        self, phone_number: str, session_id: str, channel: str = "ussd"
    ) -> Session:
        now = self._clock()
        session = await self._load(session_id)

        if session is not None and self.is_expired(session, now):
            session = None

        if session is None:
            session = self._new_session(phone_number, session_id, channel)
        else:
            session.last_activity = now

        await self.save(session)
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        session = await self._load(session_id)
        if session is None or self.is_expired(session):
            return None
        return session

    async def save(self, session: Session) -> None:
        client = await self._redis()
        await client.set(
            self._key(session.session_id),
            session.model_dump_json(),
            ex=self.timeout_seconds,
        )

    async def end(self, session_id: str) -> None:
        client = await self._redis()
        await client.delete(self._key(session_id))

    async def sweep_expired(self) -> int:
        return 0

    async def count(self) -> int:
        client = await self._redis()
        total = 0
        async for _ in client.scan_iter(match=f"{self.KEY_PREFIX}*"):
            total += 1
        return total


_store: Optional[BaseSessionStore] = None
_store_lock = threading.Lock()


def get_session_store() -> BaseSessionStore:
    """Process-wide store selected by SESSION_BACKEND"""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                options = {
                    "timeout_seconds": settings.SESSION_TIMEOUT_SECONDS,
                    "lock_timeout_seconds": settings.SESSION_LOCK_TIMEOUT_SECONDS,
                }
                if settings.SESSION_BACKEND == "redis":
                    _store = RedisSessionStore(**options)
                else:
                    _store = InMemorySessionStore(**options)
                logger.info(
                    "Session store initialized",
                    extra_data={"backend": settings.SESSION_BACKEND}
                )
    return _store


def set_session_store(store: Optional[BaseSessionStore]) -> None:
    """Replace the process-wide store (tests, custom wiring)"""
    global _store
    with _store_lock:
        _store = store


def reset_session_store() -> None:
    set_session_store(None)


async def run_session_sweeper(
    store: BaseSessionStore,
    interval_seconds: float,
) -> None:
    """Background task: sweep expired sessions until cancelled"""
    logger.info(
        "Session sweeper started",
        extra_data={"interval_seconds": interval_seconds}
    )
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await store.sweep_expired()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Keep sweeping; one failed pass must not stop expiry for good
            logger.error(
                "Session sweep failed",
                extra_data={"error": str(e)},
                exc_info=True
            )
