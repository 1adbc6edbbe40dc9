"""
LockService -- cooperative, non-blocking advisory locks.

Responsibility:
    Grants a short lease on ``(entity_type, entity_id)`` to one owner.  A
    second owner asking for a held lock is refused immediately with
    ``EntityLockedError``; nobody queues.  The same owner asking again
    refreshes the lease.

Failure modes:
    - EntityLockedError when another owner holds a live lease.

Expired leases are purged lazily on every acquire and check.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from billing_kernel.exceptions import EntityLockedError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.lock import EntityLockModel
from billing_kernel.services.base import BaseService

logger = get_logger("services.lock")


@dataclass(frozen=True)
class LockGrant:
    entity_type: str
    entity_id: UUID
    locked_by: str
    expires_at: datetime
    refreshed: bool = False


class LockService(BaseService):
    """Advisory lock table access."""

    def _lease_end(self) -> datetime:
        return self.clock.now() + timedelta(minutes=self.config.lock_duration_minutes)

    def _find(self, entity_type: str, entity_id: UUID) -> EntityLockModel | None:
        return self.session.execute(
            select(EntityLockModel).where(
                EntityLockModel.entity_type == entity_type,
                EntityLockModel.entity_id == entity_id,
            )
        ).scalar_one_or_none()

    def cleanup_expired(self) -> int:
        """Delete every lease whose expiry has passed."""
        result = self.session.execute(
            delete(EntityLockModel).where(EntityLockModel.expires_at < self.clock.now())
        )
        self.session.flush()
        return result.rowcount or 0

    def acquire(self, entity_type: str, entity_id: UUID, locked_by: str) -> LockGrant:
        """
        Take or refresh the lease.

        Raises:
            EntityLockedError: another owner holds a live lease.
        """
        self.cleanup_expired()
        existing = self._find(entity_type, entity_id)

        if existing is not None:
            if existing.locked_by != locked_by:
                logger.info("lock_refused", extra={
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "requested_by": locked_by,
                    "locked_by": existing.locked_by,
                })
                raise EntityLockedError(
                    entity_type, str(entity_id), existing.locked_by, existing.expires_at,
                )
            existing.expires_at = self._lease_end()
            self.session.flush()
            return LockGrant(entity_type, entity_id, locked_by, existing.expires_at, refreshed=True)

        lock = EntityLockModel(
            entity_type=entity_type,
            entity_id=entity_id,
            locked_by=locked_by,
            locked_at=self.clock.now(),
            expires_at=self._lease_end(),
        )
        try:
            with self.session.begin_nested():
                self.session.add(lock)
        except IntegrityError:
            # Lost an insert race; report whoever won.
            winner = self._find(entity_type, entity_id)
            raise EntityLockedError(
                entity_type,
                str(entity_id),
                winner.locked_by if winner else "unknown",
                winner.expires_at if winner else None,
            ) from None

        logger.debug("lock_acquired", extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "locked_by": locked_by,
        })
        return LockGrant(entity_type, entity_id, locked_by, lock.expires_at)

    def release(self, entity_type: str, entity_id: UUID, locked_by: str) -> bool:
        """Release a lease held by ``locked_by``; returns False if it held none."""
        result = self.session.execute(
            delete(EntityLockModel).where(
                EntityLockModel.entity_type == entity_type,
                EntityLockModel.entity_id == entity_id,
                EntityLockModel.locked_by == locked_by,
            )
        )
        self.session.flush()
        released = bool(result.rowcount)
        if released:
            logger.debug("lock_released", extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
            })
        return released

    def force_release(self, entity_type: str, entity_id: UUID) -> bool:
        """Administrative release regardless of owner."""
        result = self.session.execute(
            delete(EntityLockModel).where(
                EntityLockModel.entity_type == entity_type,
                EntityLockModel.entity_id == entity_id,
            )
        )
        self.session.flush()
        released = bool(result.rowcount)
        if released:
            logger.warning("lock_force_released", extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
            })
        return released

    def check(self, entity_type: str, entity_id: UUID) -> LockGrant | None:
        """Return the live lease, if any."""
        self.cleanup_expired()
        existing = self._find(entity_type, entity_id)
        if existing is None:
            return None
        return LockGrant(
            existing.entity_type, existing.entity_id, existing.locked_by, existing.expires_at,
        )
