"""
Pydantic schemas shared by the connectors, the sync engine and the API.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Providers
# ═══════════════════════════════════════════════════════════════════════════════


class Provider(str, Enum):
    """Closed set of supported streaming services."""

    SPOTIFY = "spotify"
    APPLE_MUSIC = "apple-music"


class LinkState(str, Enum):
    UNLINKED = "unlinked"
    VALID = "valid"
    EXPIRING = "expiring"   # inside the refresh safety margin
    EXPIRED = "expired"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════════════════════════


class Credential(BaseModel):
    """OAuth token material for one (user, provider) pair."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    provider: Provider
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, Provider]:
        return (self.user_id, self.provider)


# ═══════════════════════════════════════════════════════════════════════════════
# Normalized library
# ═══════════════════════════════════════════════════════════════════════════════


class NormalizedAlbum(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    artist_name: str = ""
    track_count: int = 0
    artwork_url: Optional[str] = None
    added_at: Optional[datetime] = None


class NormalizedPlaylist(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    track_count: int = 0
    owner_name: str = ""


class LibrarySnapshot(BaseModel):
    """
    Full normalized library for one (user, provider) at a point in time.

    Replaced wholesale on every successful sync; never merged.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    provider: Provider
    albums: List[NormalizedAlbum] = Field(default_factory=list)
    playlists: List[NormalizedPlaylist] = Field(default_factory=list)
    last_synced_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> Tuple[str, Provider]:
        return (self.user_id, self.provider)


# ═══════════════════════════════════════════════════════════════════════════════
# API responses
# ═══════════════════════════════════════════════════════════════════════════════


class ProviderInfo(BaseModel):
    provider: Provider
    display_name: str
    configured: bool


class LinkedService(BaseModel):
    provider: Provider
    state: LinkState
    expires_at: Optional[datetime] = None


class LibraryView(BaseModel):
    """Filtered + sorted projection of a snapshot returned to the UI."""

    provider: Provider
    albums: List[NormalizedAlbum] = Field(default_factory=list)
    playlists: List[NormalizedPlaylist] = Field(default_factory=list)
    last_synced_at: Optional[datetime] = None
    stale: bool = False
    syncing: bool = False
