import asyncio
import os
import socket
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from stockreserve.background_workers.constants import logger
from stockreserve.common.custom_exceptions import AlreadyLocked
from stockreserve.common.retries import is_recoverable_exception
from stockreserve.config.settings import config_settings
from stockreserve.locks.constants import SWEEPER_LOCK_KEY
from stockreserve.locks.repository import hold_lock, purge_expired_locks
from stockreserve.reservations.services import release_expired_reservations


def default_holder_id() -> str:
    return f"sweeper:{socket.gethostname()}:{os.getpid()}"


class ExpirySweeper:
    """Periodically releases expired reservations.

    Several app instances may run a sweeper; the distributed lock lets one of them
    sweep per tick and the others skip. Sweeping is also safe without the lock
    (status compare-and-swap), the lock only avoids duplicate work.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession],
                 interval_seconds: float = config_settings.SWEEPER_INTERVAL_SECONDS,
                 batch_size: int = config_settings.SWEEPER_BATCH_SIZE,
                 lock_ttl_seconds: float = config_settings.SWEEPER_LOCK_TTL_SECONDS,
                 holder_id: Optional[str] = None):
        self.session_maker = session_maker
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.lock_ttl_seconds = lock_ttl_seconds
        self.holder_id = holder_id or default_holder_id()
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self.ticks = 0

    async def run_once(self) -> int:
        """One guarded pass. Raises AlreadyLocked when another sweeper holds the lease."""
        async with hold_lock(self.session_maker, SWEEPER_LOCK_KEY, self.holder_id, self.lock_ttl_seconds):
            await purge_expired_locks(self.session_maker)
            async with self.session_maker() as session:
                return await release_expired_reservations(session, batch_size=self.batch_size)

    def start(self):
        """Start the loop as a Task on the current event loop."""
        if self._task is None:
            self._stop.clear()
            self._task = asyncio.create_task(self._loop(), name="expiry-sweeper")
            logger.info("sweeper.started", extra={"holder_id": self.holder_id, "interval": self.interval_seconds})

    async def shutdown(self, wait_timeout: float = 10.0):
        if self._task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=wait_timeout)
        except asyncio.TimeoutError:
            logger.warning("sweeper.stop_timeout; cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("sweeper.stopped", extra={"holder_id": self.holder_id, "ticks": self.ticks})

    async def _loop(self):
        while not self._stop.is_set():
            self.ticks += 1
            try:
                released = await self.run_once()
                if released:
                    logger.info("sweeper.released", extra={"released": released})
            except AlreadyLocked:
                logger.debug("sweeper.skipped_locked", extra={"holder_id": self.holder_id})
            except Exception as exc:
                # keep the loop alive; the next tick retries
                if is_recoverable_exception(exc):
                    logger.warning("sweeper.transient_error", extra={"error": str(exc)})
                else:
                    logger.exception("sweeper.tick_failed")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue


async def main() -> None:
    """Single pass for an external scheduler: python -m stockreserve.background_workers.expiry_sweeper"""
    from stockreserve.common.logging_setup import setup_logging, shutdown_logging
    from stockreserve.db.connection import async_engine, async_session

    setup_logging()
    try:
        try:
            released = await ExpirySweeper(async_session).run_once()
            logger.info("sweeper.job_done", extra={"released": released})
        except AlreadyLocked:
            logger.info("sweeper.job_skipped_locked")
    finally:
        await async_engine.dispose()
        shutdown_logging()


if __name__ == "__main__":
    asyncio.run(main())
