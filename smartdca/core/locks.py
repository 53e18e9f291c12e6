"""Distributed lock providers used to serialize daily purchase attempts."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from smartdca.core.database import get_session_factory
from smartdca.core.logging import get_logger
from smartdca.core.models import DistributedLockRecord, utc_now
from smartdca.core.repository import ensure_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class LockResponse:
    """Outcome of a lock attempt; releases the lock when used as a context manager.

    Usage:
        async with await lock.acquire("dca-purchase-2025-01-01", timedelta(minutes=5)) as resp:
            if not resp.success:
                return
            ...
    """

    def __init__(
        self,
        key: str,
        success: bool,
        release: Callable[[], Awaitable[None]] | None = None,
    ):
        self.key = key
        self.success = success
        self._release = release
        self._released = False

    async def release(self) -> None:
        """Release the lock if it is held. Safe to call more than once."""
        if self._released or not self.success or self._release is None:
            return
        self._released = True
        await self._release()

    async def __aenter__(self) -> "LockResponse":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()


class DistributedLock(ABC):
    """Mutual exclusion keyed by name, with a time-to-live."""

    @abstractmethod
    async def acquire(self, key: str, ttl: timedelta) -> LockResponse:
        """
        Try to acquire a lock without waiting.

        Args:
            key: Lock name
            ttl: How long the lock is held if never released

        Returns:
            LockResponse whose ``success`` tells whether the lock was granted
        """
        ...


class InMemoryLock(DistributedLock):
    """Process-local lock provider with TTL expiry."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._held: dict[str, tuple[str, datetime]] = {}
        self._guard = asyncio.Lock()

    async def acquire(self, key: str, ttl: timedelta) -> LockResponse:
        async with self._guard:
            now = self._clock()
            holder = self._held.get(key)
            if holder is not None and holder[1] > now:
                logger.debug("lock_busy", key=key)
                return LockResponse(key, success=False)

            owner = uuid4().hex
            self._held[key] = (owner, now + ttl)

        async def _release() -> None:
            async with self._guard:
                current = self._held.get(key)
                if current is not None and current[0] == owner:
                    del self._held[key]

        logger.debug("lock_acquired", key=key, ttl_seconds=ttl.total_seconds())
        return LockResponse(key, success=True, release=_release)

    def is_locked(self, key: str) -> bool:
        """Check whether a key is currently held."""
        holder = self._held.get(key)
        return holder is not None and holder[1] > self._clock()


class DatabaseLock(DistributedLock):
    """Lock provider backed by the ``distributed_locks`` table.

    A row per key records the owner and lease expiry. An expired lease can be
    taken over by another owner.
    """

    def __init__(
        self,
        session: "AsyncSession | None" = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._injected_session = session
        self._clock = clock

    @asynccontextmanager
    async def _get_session(self) -> AsyncGenerator["AsyncSession", None]:
        if self._injected_session:
            yield self._injected_session
        else:
            async_session = get_session_factory()
            async with async_session() as session:
                yield session

    async def acquire(self, key: str, ttl: timedelta) -> LockResponse:
        owner = uuid4().hex
        now = self._clock()

        async with self._get_session() as session:
            result = await session.execute(
                select(DistributedLockRecord).where(DistributedLockRecord.key == key)
            )
            record = result.scalar_one_or_none()

            if record is not None and ensure_utc(record.expires_at) > now:
                logger.debug("lock_busy", key=key, owner=record.owner)
                return LockResponse(key, success=False)

            if record is None:
                session.add(DistributedLockRecord(key=key, owner=owner, expires_at=now + ttl))
                try:
                    await session.commit()
                except IntegrityError as e:
                    # Another instance inserted the row first
                    await session.rollback()
                    logger.debug("lock_race_lost", key=key, error=str(e))
                    return LockResponse(key, success=False)
            else:
                # Take over only while the lease is still expired
                takeover = await session.execute(
                    update(DistributedLockRecord)
                    .where(
                        DistributedLockRecord.key == key,
                        DistributedLockRecord.expires_at <= now,
                    )
                    .values(owner=owner, expires_at=now + ttl)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                if takeover.rowcount == 0:
                    logger.debug("lock_race_lost", key=key)
                    return LockResponse(key, success=False)

        async def _release() -> None:
            async with self._get_session() as session:
                await session.execute(
                    delete(DistributedLockRecord).where(
                        DistributedLockRecord.key == key,
                        DistributedLockRecord.owner == owner,
                    )
                )
                await session.commit()

        logger.debug("lock_acquired", key=key, ttl_seconds=ttl.total_seconds())
        return LockResponse(key, success=True, release=_release)


# Global lock provider
_lock: DistributedLock | None = None


def get_distributed_lock() -> DistributedLock:
    """Get the global lock provider (database backed)."""
    global _lock
    if _lock is None:
        _lock = DatabaseLock()
    return _lock
