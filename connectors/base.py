"""
BaseConnector — abstract interface for every streaming-service provider.

Each provider (Spotify, Apple Music, …) subclasses this and supplies its
endpoints, scopes and raw-entry normalizers.  The authorization-code and
refresh-token exchanges are shared: every supported provider speaks the
same form-encoded ``/token`` dialect with HTTP Basic client auth.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config.settings import Settings, config
from connectors.errors import (
    AuthExchangeError,
    ConfigurationError,
    SyncError,
    TransientFetchError,
)
from connectors.pagination import next_page_url, unwrap_items
from utils.schemas import Credential, NormalizedAlbum, NormalizedPlaylist, Provider, utcnow

logger = logging.getLogger(__name__)

_REQUIRED_CONFIG = ("client_id", "client_secret", "redirect_uri")

# Hard stop for runaway pagination (a provider echoing the same ``next``).
_MAX_PAGES = 500


class BaseConnector(ABC):
    """Abstract base for all provider adapters."""

    #: Provider endpoints, set by subclasses.
    authorize_url: str = ""
    token_url: str = ""
    api_base: str = ""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or config
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider(self) -> Provider:
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable: 'Spotify', 'Apple Music'."""
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes required to read the user's library."""
        ...

    # ── Configuration ───────────────────────────────────────────────────

    def client_config(self) -> Dict[str, str]:
        return self.settings.provider_credentials(self.provider.value)

    def is_configured(self) -> bool:
        cfg = self.client_config()
        return all(cfg.get(key) for key in _REQUIRED_CONFIG)

    def _require_config(self) -> Dict[str, str]:
        """Fail fast, before any network call, on a missing client triple."""
        cfg = self.client_config()
        missing = [key for key in _REQUIRED_CONFIG if not cfg.get(key)]
        if missing:
            raise ConfigurationError(
                f"{self.display_name} is missing configuration: {', '.join(missing)}",
                provider=self.provider.value,
            )
        return cfg

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            transport=self._transport,
        )

    # ── OAuth flow ──────────────────────────────────────────────────────

    def _extra_auth_params(self) -> Dict[str, str]:
        return {}

    def get_auth_url(self, user_id: str, state: Optional[str] = None) -> str:
        """
        Build the provider's authorization URL.

        Parameters
        ----------
        user_id : str
            The user starting the connect flow.
        state : str, optional
            Opaque value echoed back on the callback.  Defaults to
            ``user_id`` so the callback can be correlated with the user.
        """
        cfg = self._require_config()
        params = {
            "client_id": cfg["client_id"],
            "response_type": "code",
            "redirect_uri": cfg["redirect_uri"],
            "scope": " ".join(self.scopes),
            "state": state if state is not None else user_id,
        }
        params.update(self._extra_auth_params())
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, user_id: str) -> Credential:
        """Exchange an authorization code for a fresh credential."""
        cfg = self._require_config()
        payload = await self._post_token(
            cfg,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": cfg["redirect_uri"],
            },
        )
        return self._credential_from_token(user_id, payload)

    async def refresh_token(self, credential: Credential) -> Credential:
        """
        Use the credential's refresh token to obtain a new access token.

        Providers are not required to rotate the refresh token; when the
        response omits one the previous token is kept.
        """
        cfg = self._require_config()
        if not credential.refresh_token:
            raise AuthExchangeError(
                f"No {self.display_name} refresh token on file",
                provider=self.provider.value,
            )
        payload = await self._post_token(
            cfg,
            {
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
            },
        )
        return self._credential_from_token(
            credential.user_id,
            payload,
            previous_refresh_token=credential.refresh_token,
        )

    async def revoke(self, credential: Credential) -> bool:
        """
        Revoke the credential at the provider (best-effort).
        Returns True on success, False if the provider doesn't support
        revocation or the call failed.
        """
        return False

    async def _post_token(self, cfg: Dict[str, str], form: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with self._http() as client:
                resp = await client.post(
                    self.token_url,
                    data=form,
                    auth=(cfg["client_id"], cfg["client_secret"]),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise AuthExchangeError(
                f"{self.display_name} token endpoint unreachable: {exc}",
                provider=self.provider.value,
            ) from exc

        if not resp.is_success:
            raise AuthExchangeError(
                f"{self.display_name} token exchange failed "
                f"({form['grant_type']}): HTTP {resp.status_code}",
                provider=self.provider.value,
                status_code=resp.status_code,
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthExchangeError(
                f"{self.display_name} token response is not JSON",
                provider=self.provider.value,
                status_code=resp.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise AuthExchangeError(
                f"{self.display_name} token response is not an object",
                provider=self.provider.value,
            )
        return payload

    def _credential_from_token(
        self,
        user_id: str,
        payload: Dict[str, Any],
        *,
        previous_refresh_token: Optional[str] = None,
    ) -> Credential:
        access_token = payload.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise AuthExchangeError(
                f"{self.display_name} token response has no access_token",
                provider=self.provider.value,
            )

        expires_at = None
        if payload.get("expires_in") is not None:
            try:
                expires_at = utcnow() + timedelta(seconds=float(payload["expires_in"]))
            except (TypeError, ValueError) as exc:
                raise AuthExchangeError(
                    f"{self.display_name} token response has a bad expires_in",
                    provider=self.provider.value,
                ) from exc

        return Credential(
            user_id=user_id,
            provider=self.provider,
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or previous_refresh_token,
            expires_at=expires_at,
        )

    # ── Library fetch ───────────────────────────────────────────────────

    @abstractmethod
    def library_endpoints(self) -> Dict[str, str]:
        """First-page URLs keyed by ``albums`` and ``playlists``."""
        ...

    def library_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def fetch_library(self, access_token: str) -> Dict[str, List[Any]]:
        """
        Read every page of the user's saved albums and playlists.

        Returns raw provider entries: ``{"albums": [...], "playlists": [...]}``.
        Raises ``TransientFetchError`` for retryable failures and
        ``SyncError`` for permanent ones.
        """
        headers = self.library_headers(access_token)
        raw: Dict[str, List[Any]] = {}
        async with self._http() as client:
            for kind, url in self.library_endpoints().items():
                raw[kind] = await self._fetch_all_pages(client, url, headers)
        logger.debug(
            "Fetched %s library: %d albums, %d playlists",
            self.provider.value,
            len(raw.get("albums", [])),
            len(raw.get("playlists", [])),
        )
        return raw

    async def _fetch_all_pages(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: Dict[str, str],
    ) -> List[Any]:
        items: List[Any] = []
        seen: set[str] = set()
        next_url: Optional[str] = url
        while next_url and next_url not in seen and len(seen) < _MAX_PAGES:
            seen.add(next_url)
            body = await self._get_page(client, next_url, headers)
            items.extend(unwrap_items(body))
            next_url = next_page_url(body, self.api_base)
        return items

    async def _get_page(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: Dict[str, str],
    ) -> Any:
        provider = self.provider.value
        try:
            resp = await client.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientFetchError(f"Timed out reading {url}", provider=provider) from exc
        except httpx.TransportError as exc:
            raise TransientFetchError(f"Transport error reading {url}: {exc}", provider=provider) from exc

        if resp.status_code == 429:
            raise TransientFetchError(
                f"{self.display_name} rate limited the library fetch",
                provider=provider,
                retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
            )
        if resp.status_code >= 500:
            raise TransientFetchError(
                f"{self.display_name} returned HTTP {resp.status_code}",
                provider=provider,
            )
        if not resp.is_success:
            raise SyncError(
                f"{self.display_name} rejected library request: HTTP {resp.status_code}",
                provider=provider,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise SyncError(
                f"{self.display_name} returned a non-JSON library page",
                provider=provider,
            ) from exc

    # ── Normalization ───────────────────────────────────────────────────

    @abstractmethod
    def normalize_album(self, raw: Dict[str, Any]) -> NormalizedAlbum:
        """Map one raw album entry; raise ValueError/KeyError/TypeError/AttributeError if malformed."""
        ...

    @abstractmethod
    def normalize_playlist(self, raw: Dict[str, Any]) -> NormalizedPlaylist:
        """Map one raw playlist entry; raise ValueError/KeyError/TypeError/AttributeError if malformed."""
        ...


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def require_str(obj: Dict[str, Any], key: str) -> str:
    """Return a non-empty string field or raise ValueError."""
    value = obj.get(key)
    if value is None or value == "":
        raise ValueError(f"missing {key!r}")
    return str(value)


def as_dict(value: Any) -> Dict[str, Any]:
    """``value`` if it is a JSON object, else an empty dict."""
    return value if isinstance(value, dict) else {}
