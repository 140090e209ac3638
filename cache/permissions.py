"""
cache/permissions.py -- Process-wide read-through cache for the permission catalog.

Serves call sites that need catalog lookups outside the per-request expansion
done by auth.dependencies.get_current_user (catalog listing, validating the
permission names a role is created with).

Lifecycle:
    empty      -- at process start, and after clear()
    populated  -- lazily, on the first read
    refreshed  -- wholesale, on the first read after ttl seconds
    cleared    -- only by explicit operator action (DELETE /api/v1/permissions/cache)

There is no invalidation on write: the catalog is seed data, so a permission
added at runtime shows up within ttl seconds.

Concurrency: a refresh builds a new immutable snapshot and swaps it in with a
single attribute assignment. Two readers racing on an expired snapshot may
both hit the store; the last one to finish wins. Readers never see a
half-built snapshot.

Usage:
    cache = PermissionCache(permission_store, ttl=300)
    cache.get_all_permissions()
    cache.has_permission("role_edit")
    cache.clear()
"""

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from auth.errors import ServerError
from auth.models import Permission

if TYPE_CHECKING:
    from auth.store import PermissionStore

logger = logging.getLogger("rolegate.cache")

_DEFAULT_TTL = 5 * 60  # 5 minutes in seconds


@dataclass(frozen=True)
class _Snapshot:
    by_name: dict
    loaded_at: float


class PermissionCache:
    """Time-bounded snapshot of the permission catalog, keyed by name.

    Args:
        store: source of truth; only list_permissions() is called.
        ttl: seconds a snapshot is served before the next read reloads it.
        clock: monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        store: "PermissionStore",
        ttl: int = _DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self._clock = clock
        self._snapshot: Optional[_Snapshot] = None

    def get_all_permissions(self) -> list[Permission]:
        """Return the whole catalog, refreshing first if the snapshot is missing or stale."""
        return list(self._current().by_name.values())

    def get_permission_by_name(self, name: str) -> Optional[Permission]:
        return self._current().by_name.get(name)

    def has_permission(self, name: str) -> bool:
        return name in self._current().by_name

    def refresh(self) -> None:
        """Reload the catalog from the store."""
        self._refresh(self._snapshot)

    def clear(self) -> None:
        self._snapshot = None
        logger.info("Permission cache cleared")

    def _refresh(self, previous: Optional[_Snapshot]) -> _Snapshot:
        """Build and install a new snapshot.

        On failure the previous snapshot is kept and served; with no previous
        snapshot there is nothing to serve and the read fails with ServerError.
        """
        try:
            permissions = self.store.list_permissions()
        except Exception as exc:
            logger.exception("Error refreshing permission cache")
            if previous is None:
                raise ServerError("Permission catalog unavailable.") from exc
            return previous
        snapshot = _Snapshot(by_name={p.name: p for p in permissions}, loaded_at=self._clock())
        self._snapshot = snapshot
        logger.info("Permission cache refreshed with %d permissions", len(permissions))
        return snapshot

    def _current(self) -> _Snapshot:
        snapshot = self._snapshot
        if snapshot is None or self._clock() - snapshot.loaded_at >= self.ttl:
            snapshot = self._refresh(snapshot)
        return snapshot
