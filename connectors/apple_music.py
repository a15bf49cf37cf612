"""
AppleMusicConnector — Apple ID OAuth2 + Apple Music library reads.

Library requests carry two tokens: the server's MusicKit developer token
(``APPLE_MUSIC_DEVELOPER_TOKEN``) as the bearer, and the user's token in
the ``Music-User-Token`` header.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from connectors.base import BaseConnector, as_dict, require_str
from connectors.errors import ConfigurationError
from utils.schemas import Credential, NormalizedAlbum, NormalizedPlaylist, Provider

logger = logging.getLogger(__name__)

# Apple endpoints
_APPLE_AUTH_URL = "https://appleid.apple.com/auth/authorize"
_APPLE_TOKEN_URL = "https://appleid.apple.com/auth/token"
_APPLE_REVOKE_URL = "https://appleid.apple.com/auth/revoke"
_APPLE_MUSIC_API = "https://api.music.apple.com"

_ARTWORK_SIZE = "600"


class AppleMusicConnector(BaseConnector):
    """Provider adapter for Apple Music."""

    authorize_url = _APPLE_AUTH_URL
    token_url = _APPLE_TOKEN_URL
    api_base = _APPLE_MUSIC_API

    @property
    def provider(self) -> Provider:
        return Provider.APPLE_MUSIC

    @property
    def display_name(self) -> str:
        return "Apple Music"

    @property
    def scopes(self) -> List[str]:
        return ["music.library.read"]

    async def revoke(self, credential: Credential) -> bool:
        """Revoke the refresh (or access) token at Apple."""
        cfg = self._require_config()
        token = credential.refresh_token or credential.access_token
        hint = "refresh_token" if credential.refresh_token else "access_token"
        try:
            async with self._http() as client:
                resp = await client.post(
                    _APPLE_REVOKE_URL,
                    data={
                        "client_id": cfg["client_id"],
                        "client_secret": cfg["client_secret"],
                        "token": token,
                        "token_type_hint": hint,
                    },
                )
        except httpx.HTTPError as exc:
            logger.warning("Apple Music revoke failed for user %s: %s", credential.user_id, exc)
            return False
        if not resp.is_success:
            logger.warning(
                "Apple Music revoke for user %s returned HTTP %d",
                credential.user_id,
                resp.status_code,
            )
        return resp.is_success

    # ── Library ─────────────────────────────────────────────────────────

    def library_endpoints(self) -> Dict[str, str]:
        limit = min(self.settings.library_page_size, 100)
        return {
            "albums": f"{_APPLE_MUSIC_API}/v1/me/library/albums?limit={limit}",
            "playlists": f"{_APPLE_MUSIC_API}/v1/me/library/playlists?limit={limit}",
        }

    def library_headers(self, access_token: str) -> Dict[str, str]:
        developer_token = self.settings.apple_music_developer_token
        if not developer_token:
            raise ConfigurationError(
                "Apple Music is missing configuration: apple_music_developer_token",
                provider=self.provider.value,
            )
        return {
            "Authorization": f"Bearer {developer_token}",
            "Music-User-Token": access_token,
        }

    def normalize_album(self, raw: Dict[str, Any]) -> NormalizedAlbum:
        attrs = as_dict(raw.get("attributes"))
        return NormalizedAlbum(
            id=require_str(raw, "id"),
            name=require_str(attrs, "name"),
            artist_name=attrs.get("artistName") or "",
            track_count=int(attrs.get("trackCount") or 0),
            artwork_url=_artwork_url(attrs.get("artwork")),
            added_at=attrs.get("dateAdded"),
        )

    def normalize_playlist(self, raw: Dict[str, Any]) -> NormalizedPlaylist:
        attrs = as_dict(raw.get("attributes"))
        description = attrs.get("description")
        if isinstance(description, dict):
            description = description.get("standard") or description.get("short")
        track_count = attrs.get("trackCount")
        if track_count is None:
            tracks_rel = as_dict(as_dict(raw.get("relationships")).get("tracks"))
            track_count = as_dict(tracks_rel.get("meta")).get("total", 0)
        return NormalizedPlaylist(
            id=require_str(raw, "id"),
            name=require_str(attrs, "name"),
            description=description or None,
            track_count=int(track_count or 0),
            owner_name=attrs.get("curatorName") or "",
        )


def _artwork_url(artwork: Any) -> str | None:
    """Fill Apple's ``{w}x{h}`` artwork template with a fixed size."""
    if not isinstance(artwork, dict) or not artwork.get("url"):
        return None
    return artwork["url"].replace("{w}", _ARTWORK_SIZE).replace("{h}", _ARTWORK_SIZE)
