from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Dict
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from stockreserve.common.custom_exceptions import AlreadyLocked
from stockreserve.common.utils import now
from stockreserve.locks.constants import logger
from stockreserve.schema.full_schema import DistributedLock

# A lock is a lease row: acquire = insert (the unique lock_key lets one insert win),
# release = delete by the holder, expired rows may be deleted by anyone.
# Each call runs in its own short transaction so a lease is visible to other
# callers as soon as it is granted, independent of the caller's own session.


async def acquire_lock(session_maker: async_sessionmaker[AsyncSession], lock_key: str, holder_id: str,
                       ttl_seconds: float) -> Dict[str, Any]:
    """Fail-fast: raises AlreadyLocked instead of waiting."""
    ts = now()
    expires_at = ts + timedelta(seconds=ttl_seconds)
    async with session_maker() as session:
        # reclaim a lease whose holder died without releasing
        await session.execute(
            delete(DistributedLock)
            .where(DistributedLock.lock_key == lock_key, DistributedLock.expires_at <= ts)
            .execution_options(synchronize_session=False)
        )
        session.add(DistributedLock(lock_key=lock_key, locked_by=holder_id, acquired_at=ts, expires_at=expires_at))
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.debug("lock.contended", extra={"lock_key": lock_key, "holder_id": holder_id})
            raise AlreadyLocked(lock_key)

    logger.debug("lock.acquired", extra={"lock_key": lock_key, "holder_id": holder_id, "ttl_seconds": ttl_seconds})
    return {"lock_key": lock_key, "locked_by": holder_id, "acquired_at": ts, "expires_at": expires_at}


async def release_lock(session_maker: async_sessionmaker[AsyncSession], lock_key: str, holder_id: str) -> bool:
    """Only the holder can release. False when the lease was not ours (anymore)."""
    async with session_maker() as session:
        res = await session.execute(
            delete(DistributedLock)
            .where(DistributedLock.lock_key == lock_key, DistributedLock.locked_by == holder_id)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

    released = res.rowcount == 1
    if not released:
        logger.warning("lock.release_not_held", extra={"lock_key": lock_key, "holder_id": holder_id})
    return released


async def purge_expired_locks(session_maker: async_sessionmaker[AsyncSession]) -> int:
    async with session_maker() as session:
        res = await session.execute(
            delete(DistributedLock).where(DistributedLock.expires_at <= now())
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    if res.rowcount:
        logger.info("lock.expired_purged", extra={"count": res.rowcount})
    return res.rowcount


@asynccontextmanager
async def hold_lock(session_maker: async_sessionmaker[AsyncSession], lock_key: str, holder_id: str,
                    ttl_seconds: float) -> AsyncIterator[Dict[str, Any]]:
    lease = await acquire_lock(session_maker, lock_key, holder_id, ttl_seconds)
    try:
        yield lease
    finally:
        await release_lock(session_maker, lock_key, holder_id)
