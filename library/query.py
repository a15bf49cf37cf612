"""
Search / sort helpers for the library view.

Sort specs look like ``"name-asc"`` or ``"artist-desc"``.  Playlists have
no artist, so they always sort by name.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from library.cache import CacheEntry
from utils.schemas import LibraryView, NormalizedAlbum, NormalizedPlaylist, Provider

SORT_KEYS = ("name", "artist")
KINDS = ("all", "albums", "playlists")


def parse_sort(spec: str) -> Tuple[str, bool]:
    """``"artist-desc"`` → ``("artist", False)``. Raises ValueError on junk."""
    key, _, order = spec.strip().lower().partition("-")
    if key not in SORT_KEYS or order not in ("asc", "desc"):
        raise ValueError(f"Invalid sort {spec!r}; expected <name|artist>-<asc|desc>")
    return key, order == "asc"


def search_albums(albums: Sequence[NormalizedAlbum], query: str) -> List[NormalizedAlbum]:
    needle = query.strip().lower()
    if not needle:
        return list(albums)
    return [a for a in albums if needle in a.name.lower() or needle in a.artist_name.lower()]


def search_playlists(playlists: Sequence[NormalizedPlaylist], query: str) -> List[NormalizedPlaylist]:
    needle = query.strip().lower()
    if not needle:
        return list(playlists)
    return [p for p in playlists if needle in p.name.lower()]


def sort_albums(albums: Sequence[NormalizedAlbum], spec: str) -> List[NormalizedAlbum]:
    key, ascending = parse_sort(spec)
    if key == "artist":
        return sorted(albums, key=lambda a: a.artist_name.lower(), reverse=not ascending)
    return sorted(albums, key=lambda a: a.name.lower(), reverse=not ascending)


def sort_playlists(playlists: Sequence[NormalizedPlaylist], spec: str) -> List[NormalizedPlaylist]:
    _, ascending = parse_sort(spec)
    return sorted(playlists, key=lambda p: p.name.lower(), reverse=not ascending)


def query_library(
    entry: Optional[CacheEntry],
    provider: Provider,
    *,
    query: str = "",
    sort: Optional[str] = "name-asc",
    kind: str = "all",
    syncing: bool = False,
) -> LibraryView:
    """Build the filtered/sorted view of a cached snapshot (empty if none yet)."""
    if kind not in KINDS:
        raise ValueError(f"Invalid kind {kind!r}; expected one of {', '.join(KINDS)}")
    if sort:
        parse_sort(sort)

    albums: List[NormalizedAlbum] = []
    playlists: List[NormalizedPlaylist] = []
    last_synced_at: Optional[datetime] = None
    stale = False
    if entry is not None:
        snapshot = entry.snapshot
        last_synced_at = snapshot.last_synced_at
        stale = entry.stale
        if kind in ("all", "albums"):
            albums = search_albums(snapshot.albums, query)
            if sort:
                albums = sort_albums(albums, sort)
        if kind in ("all", "playlists"):
            playlists = search_playlists(snapshot.playlists, query)
            if sort:
                playlists = sort_playlists(playlists, sort)

    return LibraryView(
        provider=provider,
        albums=albums,
        playlists=playlists,
        last_synced_at=last_synced_at,
        stale=stale,
        syncing=syncing,
    )
