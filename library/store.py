"""
Persisted library snapshots — one row per (user, service), replaced wholesale.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import LibrarySnapshotRecord, as_utc
from utils.schemas import LibrarySnapshot, NormalizedAlbum, NormalizedPlaylist, Provider

logger = logging.getLogger(__name__)


def _to_snapshot(row: LibrarySnapshotRecord) -> LibrarySnapshot:
    return LibrarySnapshot(
        user_id=row.user_id,
        provider=Provider(row.service),
        albums=[NormalizedAlbum.model_validate(a) for a in row.albums or []],
        playlists=[NormalizedPlaylist.model_validate(p) for p in row.playlists or []],
        last_synced_at=as_utc(row.last_synced_at),
    )


class SnapshotStore:
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        if session_factory is None:
            from database.session import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory

    async def save(self, snapshot: LibrarySnapshot) -> bool:
        """
        Persist ``snapshot`` unless the stored one was synced later.

        Returns False when the write was refused as older.
        """
        try:
            return await self._write(snapshot)
        except IntegrityError:
            return await self._write(snapshot)

    async def _write(self, snapshot: LibrarySnapshot) -> bool:
        payload = snapshot.model_dump(mode="json")
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(LibrarySnapshotRecord).where(
                        LibrarySnapshotRecord.user_id == snapshot.user_id,
                        LibrarySnapshotRecord.service == snapshot.provider.value,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = LibrarySnapshotRecord(
                        user_id=snapshot.user_id,
                        service=snapshot.provider.value,
                    )
                    session.add(row)
                elif as_utc(row.last_synced_at) > snapshot.last_synced_at:
                    logger.info(
                        "Keeping newer %s snapshot for user %s",
                        snapshot.provider.value,
                        snapshot.user_id,
                    )
                    return False
                row.albums = payload["albums"]
                row.playlists = payload["playlists"]
                row.last_synced_at = snapshot.last_synced_at
                await session.commit()
                return True
            except Exception:
                await session.rollback()
                raise

    async def get(self, user_id: str, provider: Provider) -> Optional[LibrarySnapshot]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(LibrarySnapshotRecord).where(
                    LibrarySnapshotRecord.user_id == user_id,
                    LibrarySnapshotRecord.service == provider.value,
                )
            )
            row = result.scalar_one_or_none()
            return _to_snapshot(row) if row is not None else None

    async def delete(self, user_id: str, provider: Provider) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(LibrarySnapshotRecord).where(
                    LibrarySnapshotRecord.user_id == user_id,
                    LibrarySnapshotRecord.service == provider.value,
                )
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def load_all(self) -> List[LibrarySnapshot]:
        """Every persisted snapshot; unreadable rows are logged and skipped."""
        async with self._session_factory() as session:
            result = await session.execute(select(LibrarySnapshotRecord))
            rows = result.scalars().all()
        snapshots = []
        for row in rows:
            try:
                snapshots.append(_to_snapshot(row))
            except ValueError as exc:
                logger.warning(
                    "Skipping unreadable %s snapshot for user %s: %s",
                    row.service,
                    row.user_id,
                    exc,
                )
        return snapshots
