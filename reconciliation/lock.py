"""
Single-row sync lock with compare-and-set acquisition and lease expiry
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from datetime import datetime, timedelta
from sqlalchemy import select, update, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import logging
import uuid

from core.config import settings
from core.database import dialect_insert
from core.exceptions import ConcurrencyError, SyncSystemError
from models.sync_lock import SyncLock
from schemas.sync import SyncLockState

logger = logging.getLogger(__name__)

STOCK_SYNC_LOCK = "items_stock_sync"


class SyncLease:
    """Proof of holding the sync lock, valid until released or expired"""

    def __init__(self, manager: "SyncLockManager", token: str, owner: Optional[str],
                 acquired_at: datetime, expires_at: datetime):
        self.manager = manager
        self.token = token
        self.owner = owner
        self.acquired_at = acquired_at
        self.expires_at = expires_at

    async def renew(self) -> None:
        await self.manager.renew(self)


class SyncLockManager:
    """
    Mutual exclusion for reconciliation runs, backed by the shared store.

    Every operation runs in its own short transaction so the lock state is
    visible to other processes immediately, independent of the run's
    session.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        name: str = STOCK_SYNC_LOCK,
        ttl_seconds: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.name = name
        self.ttl = timedelta(
            seconds=settings.SYNC_LOCK_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        )

    async def _ensure_lock_row(self, session: AsyncSession) -> None:
        insert = dialect_insert(session)
        await session.execute(
            insert(SyncLock)
            .values(name=self.name, updated_at=datetime.utcnow())
            .on_conflict_do_nothing(index_elements=["name"])
        )

    async def try_acquire(self, owner: Optional[str] = None) -> Optional[SyncLease]:
        """
        Atomically take the lock if it is free or its lease has expired.

        Returns:
            A SyncLease, or None when another holder has a live lease

        Raises:
            SyncSystemError: If the lock row cannot be read or written
        """
        token = uuid.uuid4().hex
        now = datetime.utcnow()
        expires_at = now + self.ttl

        async with self.session_factory() as session:
            try:
                await self._ensure_lock_row(session)
                result = await session.execute(
                    update(SyncLock)
                    .where(
                        SyncLock.name == self.name,
                        or_(
                            SyncLock.holder_token.is_(None),
                            SyncLock.expires_at.is_(None),
                            SyncLock.expires_at < now
                        )
                    )
                    .values(
                        holder_token=token,
                        owner=owner,
                        acquired_at=now,
                        heartbeat_at=now,
                        expires_at=expires_at
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise SyncSystemError(
                    "Failed to acquire sync lock",
                    context={"lock_name": self.name},
                    original_exception=e
                )

        if result.rowcount != 1:
            return None

        logger.info(f"Sync lock '{self.name}' acquired by {owner or 'anonymous'} until {expires_at.isoformat()}")
        return SyncLease(self, token, owner, now, expires_at)

    @asynccontextmanager
    async def acquire(self, owner: Optional[str] = None) -> AsyncIterator[SyncLease]:
        """
        Hold the lock for the duration of the block; released on every exit path.

        Raises:
            ConcurrencyError: If another run currently holds the lock
        """
        lease = await self.try_acquire(owner)
        if lease is None:
            state = await self.get_state()
            raise ConcurrencyError(
                "A stock sync is already running",
                context={
                    "lock_name": self.name,
                    "owner": state.owner,
                    "expires_at": state.expires_at.isoformat() if state.expires_at else None
                }
            )

        try:
            yield lease
        finally:
            await self.release(lease)

    async def renew(self, lease: SyncLease) -> None:
        """
        Push the lease expiry forward.

        Raises:
            SyncSystemError: If the lease was lost (expired and taken over)
        """
        now = datetime.utcnow()
        expires_at = now + self.ttl

        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    update(SyncLock)
                    .where(SyncLock.name == self.name, SyncLock.holder_token == lease.token)
                    .values(heartbeat_at=now, expires_at=expires_at)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise SyncSystemError(
                    "Failed to renew sync lock",
                    context={"lock_name": self.name},
                    original_exception=e
                )

        if result.rowcount != 1:
            raise SyncSystemError(
                "Sync lock lease was lost before the run finished",
                context={"lock_name": self.name, "owner": lease.owner}
            )
        lease.expires_at = expires_at

    async def release(self, lease: SyncLease) -> bool:
        """
        Clear the lock if this lease still holds it.

        A failure here is logged rather than raised: the lease expiry lets
        the next trigger reclaim the lock.
        """
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    update(SyncLock)
                    .where(SyncLock.name == self.name, SyncLock.holder_token == lease.token)
                    .values(holder_token=None, owner=None, heartbeat_at=None, expires_at=None)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                logger.exception(
                    f"Failed to release sync lock '{self.name}'; it will be reclaimable after "
                    f"{lease.expires_at.isoformat()}"
                )
                return False

        released = result.rowcount == 1
        if released:
            logger.info(f"Sync lock '{self.name}' released")
        else:
            logger.warning(f"Sync lock '{self.name}' was no longer held by this lease at release")
        return released

    async def get_state(self) -> SyncLockState:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncLock).where(SyncLock.name == self.name)
            )
            lock = result.scalar_one_or_none()

        if lock is None or lock.holder_token is None:
            return SyncLockState(is_locked=False)

        now = datetime.utcnow()
        live = lock.expires_at is not None and lock.expires_at > now
        return SyncLockState(
            is_locked=live,
            owner=lock.owner,
            acquired_at=lock.acquired_at,
            heartbeat_at=lock.heartbeat_at,
            expires_at=lock.expires_at,
            is_stale=not live
        )

    async def is_locked(self) -> bool:
        state = await self.get_state()
        return state.is_locked
