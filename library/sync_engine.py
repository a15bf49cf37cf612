"""
SyncEngine — pull a provider library into a normalized snapshot.

    token ─▶ fetch (paginated, retried) ─▶ normalize ─▶ commit (store + cache)

The commit is the only step with side effects and runs shielded: a sync
abandoned before it writes nothing, and one abandoned during it still
finishes the write.  A failed sync leaves the previous snapshot untouched.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from config.settings import Settings, config
from connectors.base import BaseConnector
from connectors.errors import SyncError, TransientFetchError
from connectors.token_manager import TokenManager
from library.cache import CacheEntry, LibraryCache
from library.normalizer import normalize_library
from library.store import SnapshotStore
from utils.schemas import LibrarySnapshot, Provider, utcnow

logger = logging.getLogger(__name__)

_Key = Tuple[str, Provider]


class SyncEngine:
    def __init__(
        self,
        token_manager: TokenManager,
        cache: Optional[LibraryCache] = None,
        store: Optional[SnapshotStore] = None,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.tokens = token_manager
        self.cache = cache if cache is not None else LibraryCache()
        self.store = store
        self.settings = settings or config
        self._clock = clock
        self._sleep = sleep
        self._background: Dict[_Key, asyncio.Task] = {}
        # bumped on disconnect so an in-flight sync cannot resurrect a snapshot;
        # entries live only while a sync for the key is running
        self._generation: Dict[_Key, int] = {}
        self._running: Dict[_Key, int] = {}

    # ── Sync ────────────────────────────────────────────────────────────

    async def sync_library(self, user_id: str, provider: Provider) -> LibrarySnapshot:
        """
        Run one full sync and return the committed snapshot.

        Raises ``NotLinked`` / ``ReauthorizationRequired`` unchanged from the
        token manager, and ``SyncError`` when the fetch keeps failing.
        """
        key = (user_id, provider)
        self._hold(key)
        try:
            return await self._sync(user_id, provider, self._generation.get(key, 0))
        finally:
            self._release(key)

    async def _sync(self, user_id: str, provider: Provider, generation: int) -> LibrarySnapshot:
        access_token = await self.tokens.get_valid_access_token(user_id, provider)
        connector = self.tokens.connector(provider)

        raw = await self._fetch_with_retry(connector, access_token, user_id)
        albums, playlists = normalize_library(connector, raw)

        snapshot = LibrarySnapshot(
            user_id=user_id,
            provider=provider,
            albums=albums,
            playlists=playlists,
            last_synced_at=self._clock(),
        )
        # the commit keeps its own hold: it outlives a cancelled caller
        self._hold(snapshot.key)
        await asyncio.shield(self._commit(snapshot, generation))
        logger.info(
            "Synced %s library for user %s: %d albums, %d playlists",
            provider.value,
            user_id,
            len(albums),
            len(playlists),
        )
        return snapshot

    async def _fetch_with_retry(
        self,
        connector: BaseConnector,
        access_token: str,
        user_id: str,
    ) -> Dict[str, List[Any]]:
        max_attempts = max(1, self.settings.sync_max_attempts)
        base_delay = self.settings.sync_backoff_base_seconds
        provider = connector.provider.value

        for attempt in range(1, max_attempts + 1):
            try:
                return await connector.fetch_library(access_token)
            except TransientFetchError as exc:
                if attempt == max_attempts:
                    logger.error(
                        "%s library fetch for user %s failed after %d attempts: %s",
                        provider,
                        user_id,
                        attempt,
                        exc,
                    )
                    raise SyncError(
                        f"{provider} library fetch failed after {attempt} attempts",
                        provider=provider,
                    ) from exc
                delay = base_delay * 2 ** (attempt - 1)
                if exc.retry_after is not None:
                    delay = max(delay, exc.retry_after)
                logger.warning(
                    "%s library fetch attempt %d/%d failed (%s); retrying in %.1fs",
                    provider,
                    attempt,
                    max_attempts,
                    exc,
                    delay,
                )
                await self._sleep(delay)

        raise SyncError(f"{provider} library fetch failed", provider=provider)

    async def _commit(self, snapshot: LibrarySnapshot, generation: int) -> None:
        key = snapshot.key
        try:
            if self._generation.get(key, 0) != generation:
                logger.info("Dropping %s snapshot for user %s: disconnected during sync", *_describe(key))
                return
            if self.store is not None:
                try:
                    saved = await self.store.save(snapshot)
                except SQLAlchemyError as exc:
                    raise SyncError(
                        f"Could not persist {snapshot.provider.value} snapshot",
                        provider=snapshot.provider.value,
                    ) from exc
                if self._generation.get(key, 0) != generation:
                    await self.store.delete(*key)
                    return
                if not saved:
                    return
            self.cache.put(snapshot)
        finally:
            self._release(key)

    def _hold(self, key: _Key) -> None:
        self._running[key] = self._running.get(key, 0) + 1

    def _release(self, key: _Key) -> None:
        self._running[key] -= 1
        if not self._running[key]:
            del self._running[key]
            self._generation.pop(key, None)

    # ── Read policy ─────────────────────────────────────────────────────

    def get_or_refresh(
        self,
        user_id: str,
        provider: Provider,
        max_age: timedelta,
    ) -> Tuple[Optional[CacheEntry], bool]:
        """
        Serve from cache; start a background sync when the entry is missing,
        invalidated, or older than ``max_age``.

        Returns ``(entry or None, syncing)``.
        """
        entry = self.cache.peek(user_id, provider)
        if entry is not None and entry.is_fresh(max_age, self._clock()):
            return entry, False
        self.schedule_sync(user_id, provider)
        return entry, True

    def schedule_sync(self, user_id: str, provider: Provider) -> asyncio.Task:
        """Start a background sync unless one is already running for the key."""
        key = (user_id, provider)
        task = self._background.get(key)
        if task is not None and not task.done():
            return task
        task = asyncio.ensure_future(self.sync_library(user_id, provider))
        self._background[key] = task
        task.add_done_callback(lambda t, k=key: self._background_done(k, t))
        return task

    def _background_done(self, key: _Key, task: asyncio.Task) -> None:
        if self._background.get(key) is task:
            del self._background[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background %s sync for user %s failed: %s", *_describe(key), exc)

    def refresh_stale(self, max_age: timedelta) -> int:
        """Schedule background syncs for every cached library older than ``max_age``."""
        now = self._clock()
        scheduled = 0
        for entry in self.cache.entries():
            if entry.is_fresh(max_age, now):
                continue
            snapshot = entry.snapshot
            if not self.is_syncing(snapshot.user_id, snapshot.provider):
                self.schedule_sync(snapshot.user_id, snapshot.provider)
                scheduled += 1
        return scheduled

    async def run_periodic_refresh(self, interval: timedelta, max_age: timedelta) -> None:
        """Loop forever calling ``refresh_stale``; cancel the task to stop."""
        while True:
            await self._sleep(interval.total_seconds())
            scheduled = self.refresh_stale(max_age)
            if scheduled:
                logger.info("Periodic refresh scheduled %d library syncs", scheduled)

    def is_syncing(self, user_id: str, provider: Provider) -> bool:
        task = self._background.get((user_id, provider))
        return task is not None and not task.done()

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def forget(self, user_id: str, provider: Provider) -> None:
        """Drop everything held for a disconnected (user, provider)."""
        key = (user_id, provider)
        if key in self._running:
            self._generation[key] = self._generation.get(key, 0) + 1
        task = self._background.pop(key, None)
        if task is not None and not task.done():
            task.cancel()
        self.cache.evict(user_id, provider)
        if self.store is not None:
            await self.store.delete(user_id, provider)

    async def warm(self) -> int:
        """Load persisted snapshots into the cache."""
        if self.store is None:
            return 0
        loaded = self.cache.load(await self.store.load_all())
        logger.info("Loaded %d library snapshots into cache", loaded)
        return loaded


def _describe(key: _Key) -> Tuple[str, str]:
    """(provider, user_id) for log lines."""
    return key[1].value, key[0]
