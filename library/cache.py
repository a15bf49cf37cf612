"""
LibraryCache — latest normalized snapshot per (user, provider).

Reads are synchronous and never touch the network.  Writes replace the
whole snapshot object, so a reader sees either the old snapshot or the new
one, never a mix.  Staleness policy (how old is too old) belongs to the
caller; the cache only records timestamps and an explicit stale flag.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from connectors.errors import SnapshotNotFound
from utils.schemas import LibrarySnapshot, Provider, utcnow

logger = logging.getLogger(__name__)

_Key = Tuple[str, Provider]


@dataclass(frozen=True)
class CacheEntry:
    snapshot: LibrarySnapshot
    stale: bool = False

    @property
    def last_synced_at(self) -> datetime:
        return self.snapshot.last_synced_at

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utcnow()) - self.snapshot.last_synced_at

    def is_fresh(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        """Fresh = not invalidated and younger than the caller's window."""
        return not self.stale and self.age(now) < max_age


class LibraryCache:
    def __init__(self) -> None:
        self._entries: Dict[_Key, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, provider: Provider) -> CacheEntry:
        entry = self._entries.get((user_id, provider))
        if entry is None:
            raise SnapshotNotFound(
                f"No {provider.value} snapshot for user {user_id}",
                provider=provider.value,
            )
        return entry

    def peek(self, user_id: str, provider: Provider) -> Optional[CacheEntry]:
        return self._entries.get((user_id, provider))

    def put(self, snapshot: LibrarySnapshot) -> bool:
        """
        Atomically replace the snapshot for ``snapshot.key``.

        Refuses a snapshot older than the current one so ``last_synced_at``
        only moves forward.  Returns True when the snapshot was stored.
        """
        with self._lock:
            current = self._entries.get(snapshot.key)
            if current is not None and snapshot.last_synced_at < current.last_synced_at:
                logger.warning(
                    "Ignoring out-of-order %s snapshot for user %s (%s < %s)",
                    snapshot.provider.value,
                    snapshot.user_id,
                    snapshot.last_synced_at.isoformat(),
                    current.last_synced_at.isoformat(),
                )
                return False
            self._entries[snapshot.key] = CacheEntry(snapshot=snapshot)
            return True

    def invalidate(self, user_id: str, provider: Provider) -> bool:
        """Mark the snapshot stale without dropping it. False if nothing cached."""
        with self._lock:
            entry = self._entries.get((user_id, provider))
            if entry is None:
                return False
            self._entries[(user_id, provider)] = replace(entry, stale=True)
            return True

    def evict(self, user_id: str, provider: Provider) -> bool:
        with self._lock:
            return self._entries.pop((user_id, provider), None) is not None

    def load(self, snapshots: Iterable[LibrarySnapshot]) -> int:
        """Warm the cache from persisted snapshots; returns how many were kept."""
        return sum(1 for snapshot in snapshots if self.put(snapshot))

    def entries(self) -> List[CacheEntry]:
        """Point-in-time copy of every cached entry."""
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)
