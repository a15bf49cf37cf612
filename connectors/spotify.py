"""
SpotifyConnector — OAuth2 authorization-code flow + library reads for Spotify.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from connectors.base import BaseConnector, as_dict, require_str
from utils.schemas import Credential, NormalizedAlbum, NormalizedPlaylist, Provider

logger = logging.getLogger(__name__)

# Spotify endpoints
_SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
_SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
_SPOTIFY_API = "https://api.spotify.com"


class SpotifyConnector(BaseConnector):
    """Provider adapter for Spotify."""

    authorize_url = _SPOTIFY_AUTH_URL
    token_url = _SPOTIFY_TOKEN_URL
    api_base = _SPOTIFY_API

    @property
    def provider(self) -> Provider:
        return Provider.SPOTIFY

    @property
    def display_name(self) -> str:
        return "Spotify"

    @property
    def scopes(self) -> List[str]:
        return [
            "user-library-read",
            "user-library-modify",
            "playlist-read-private",
            "playlist-modify-public",
            "playlist-modify-private",
        ]

    def _extra_auth_params(self) -> Dict[str, str]:
        # always show the consent dialog so switching accounts is possible
        return {"show_dialog": "true"}

    async def revoke(self, credential: Credential) -> bool:
        # Spotify has no token revocation endpoint; users revoke from their account page.
        logger.info(
            "Spotify has no revocation endpoint; dropping local credential for user %s",
            credential.user_id,
        )
        return False

    # ── Library ─────────────────────────────────────────────────────────

    def library_endpoints(self) -> Dict[str, str]:
        limit = min(self.settings.library_page_size, 50)
        return {
            "albums": f"{_SPOTIFY_API}/v1/me/albums?limit={limit}",
            "playlists": f"{_SPOTIFY_API}/v1/me/playlists?limit={limit}",
        }

    def normalize_album(self, raw: Dict[str, Any]) -> NormalizedAlbum:
        # saved-album items wrap the album: {"added_at": ..., "album": {...}}
        album = raw.get("album") if isinstance(raw.get("album"), dict) else raw
        artists = [as_dict(a) for a in _as_list(album.get("artists"))]
        images = _as_list(album.get("images"))
        track_count = album.get("total_tracks")
        if track_count is None:
            track_count = as_dict(album.get("tracks")).get("total", 0)
        return NormalizedAlbum(
            id=require_str(album, "id"),
            name=require_str(album, "name"),
            artist_name=", ".join(a["name"] for a in artists if a.get("name")),
            track_count=int(track_count or 0),
            artwork_url=as_dict(images[0]).get("url") if images else None,
            added_at=raw.get("added_at"),
        )

    def normalize_playlist(self, raw: Dict[str, Any]) -> NormalizedPlaylist:
        owner = as_dict(raw.get("owner"))
        tracks = as_dict(raw.get("tracks"))
        return NormalizedPlaylist(
            id=require_str(raw, "id"),
            name=require_str(raw, "name"),
            description=raw.get("description") or None,
            track_count=int(tracks.get("total") or 0),
            owner_name=owner.get("display_name") or owner.get("id") or "",
        )


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []
