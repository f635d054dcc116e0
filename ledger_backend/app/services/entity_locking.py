"""
Entity locking service.

Per-entity exclusive locks held for the lifetime of a unit of work.

The database row lock (SELECT ... FOR UPDATE) is what serializes writers
across processes. This registry adds the same guarantee between coroutines
of one process, which also covers backends without row locks (SQLite).
Locks are keyed by (entity type, entity id); two different entities never
contend.
"""

import asyncio
import weakref
from typing import Dict, Hashable, List, Tuple

from ledger_backend.app.core.config import settings
from ledger_backend.app.core.exceptions import LockTimeoutError
from ledger_backend.app.models.ledger_enums import OwningEntityType

# Key under which the active scope is stored in AsyncSession.info
LOCK_SCOPE_KEY = "ledger.entity_lock_scope"

LockKey = Tuple[OwningEntityType, Hashable]


class EntityLockRegistry:
    """Process-local registry of per-entity asyncio locks."""

    def __init__(self, timeout_seconds: float = None):
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.lock_timeout_seconds
        )
        # Locks disappear once nobody holds or waits on them
        self._locks: "weakref.WeakValueDictionary[LockKey, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: LockKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, entity_type: OwningEntityType, entity_id: Hashable) -> bool:
        """
        Check if an entity is currently locked.

        Args:
            entity_type: Kind of owning entity
            entity_id: Entity to check

        Returns:
            True if some unit of work holds the lock
        """
        lock = self._locks.get((entity_type, entity_id))
        return lock is not None and lock.locked()

    def scope(self) -> "EntityLockScope":
        return EntityLockScope(self)


class EntityLockScope:
    """
    Locks acquired by one unit of work.

    Re-entrant per entity within the scope; everything is released when the
    scope exits, after the surrounding transaction has committed or rolled back.
    """

    def __init__(self, registry: EntityLockRegistry):
        self.registry = registry
        self._held: Dict[LockKey, asyncio.Lock] = {}
        self._order: List[LockKey] = []

    async def __aenter__(self) -> "EntityLockScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release_all()

    def holds(self, entity_type: OwningEntityType, entity_id: Hashable) -> bool:
        return (entity_type, entity_id) in self._held

    async def acquire(self, entity_type: OwningEntityType, entity_id: Hashable) -> None:
        """
        Acquire the lock for one entity, waiting at most the registry timeout.

        Raises:
            LockTimeoutError: If the lock is not obtained in time
        """
        key = (entity_type, entity_id)
        if key in self._held:
            return

        lock = self.registry._lock_for(key)
        timeout = self.registry.timeout_seconds
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise LockTimeoutError(entity_type.value, entity_id, timeout)

        self._held[key] = lock
        self._order.append(key)

    def release_all(self) -> None:
        while self._order:
            key = self._order.pop()
            lock = self._held.pop(key)
            lock.release()
