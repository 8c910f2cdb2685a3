"""Advisory TTL lock serializing implement-mode runs."""

from __future__ import annotations

import logging
import os
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from agent_runner.orchestrator.models import LockEntry, to_iso, utc_now
from agent_runner.orchestrator.state import LockStore

logger = logging.getLogger(__name__)

MIN_LOCK_TTL_MINUTES = 1


@dataclass(slots=True)
class LockAcquisition:
    """Result of one acquisition attempt."""

    ok: bool
    expires_at: str | None = None
    reason: str | None = None


def new_holder_id() -> str:
    """Holder id unique per process and attempt: ``<pid>:<hex>``."""

    return f"{os.getpid()}:{secrets.token_hex(3)}"


class LockManager:
    """Acquire and release named locks stored in a :class:`LockStore`."""

    def __init__(self, store: LockStore, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self.clock = clock

    def try_acquire(
        self,
        lock_key: str,
        holder_id: str,
        *,
        ttl_minutes: int,
        force: bool = False,
    ) -> LockAcquisition:
        now = self.clock()
        ttl = timedelta(minutes=max(MIN_LOCK_TTL_MINUTES, ttl_minutes))
        with self.store.transaction():
            table = self.store.load()
            existing = table.locks.get(lock_key)
            if existing is not None and not existing.is_expired(now):
                if not force:
                    return LockAcquisition(
                        ok=False,
                        reason=f"locked by {existing.holder} until {existing.expires_at}",
                    )
                logger.warning(
                    "Forcing lock %s away from live holder %s (expires %s)",
                    lock_key,
                    existing.holder,
                    existing.expires_at,
                )
            elif existing is not None:
                logger.info("Taking over expired lock %s from %s", lock_key, existing.holder)

            expires_at = to_iso(now + ttl)
            table.locks[lock_key] = LockEntry(
                holder=holder_id,
                acquired_at=to_iso(now),
                expires_at=expires_at,
            )
            self.store.save(table)
        logger.info("Acquired lock %s as %s until %s", lock_key, holder_id, expires_at)
        return LockAcquisition(ok=True, expires_at=expires_at)

    def release(self, lock_key: str, holder_id: str) -> bool:
        """Delete the lock only if ``holder_id`` still owns it."""

        with self.store.transaction():
            table = self.store.load()
            existing = table.locks.get(lock_key)
            if existing is None:
                return False
            if existing.holder != holder_id:
                logger.warning(
                    "Lock %s is now held by %s; leaving it in place (we were %s)",
                    lock_key,
                    existing.holder,
                    holder_id,
                )
                return False
            del table.locks[lock_key]
            self.store.save(table)
        logger.info("Released lock %s held by %s", lock_key, holder_id)
        return True
