"""
Raw provider library → normalized albums and playlists.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Tuple, TypeVar

from connectors.base import BaseConnector
from connectors.pagination import unwrap_items
from utils.schemas import NormalizedAlbum, NormalizedPlaylist

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _normalize_each(
    entries: List[Any],
    convert: Callable[[Dict[str, Any]], T],
    kind: str,
    provider: str,
) -> List[T]:
    """Convert entries in order; malformed ones are skipped, not fatal."""
    out: List[T] = []
    skipped = 0
    for entry in entries:
        if not isinstance(entry, dict):
            skipped += 1
            continue
        try:
            out.append(convert(entry))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            skipped += 1
            logger.debug("Skipping malformed %s %s entry: %s", provider, kind, exc)
    if skipped:
        logger.info("Skipped %d malformed %s %s entries", skipped, provider, kind)
    return out


def normalize_library(
    connector: BaseConnector,
    raw: Dict[str, Any],
) -> Tuple[List[NormalizedAlbum], List[NormalizedPlaylist]]:
    """
    Normalize a raw library.

    ``raw["albums"]`` / ``raw["playlists"]`` may each be a bare list or an
    ``{"items": [...]}`` / ``{"data": [...]}`` wrapper; both produce the
    same result.
    """
    provider = connector.provider.value
    albums = _normalize_each(unwrap_items(raw.get("albums")), connector.normalize_album, "album", provider)
    playlists = _normalize_each(
        unwrap_items(raw.get("playlists")), connector.normalize_playlist, "playlist", provider
    )
    return albums, playlists
