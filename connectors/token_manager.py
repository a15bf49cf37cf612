"""
Token manager — connect / refresh / disconnect per-user provider credentials.

This is the single interface the sync engine and the API use to get an
access token for a (user, provider) pair.

Per-credential states::

    UNLINKED ──exchange──▶ VALID ──time──▶ EXPIRING ──time──▶ EXPIRED
        ▲                    ▲                 │                 │
        │                    └──── refresh ────┴─────────────────┘
        └────────────── disconnect ──────────────────────────────┘

A failed refresh leaves the stale credential in place and raises
``ReauthorizationRequired`` so the UI can prompt a reconnect.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from config.settings import Settings, config
from connectors.base import BaseConnector
from connectors.credential_store import CredentialStore
from connectors.errors import (
    AuthExchangeError,
    ConfigurationError,
    NotLinked,
    ReauthorizationRequired,
)
from connectors.registry import ConnectorRegistry
from utils.schemas import Credential, LinkedService, LinkState, Provider, utcnow

logger = logging.getLogger(__name__)

_Key = Tuple[str, Provider]
UnlinkListener = Callable[[str, Provider], Awaitable[None]]


class TokenManager:
    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        registry: Optional[ConnectorRegistry] = None,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store or CredentialStore()
        self.registry = registry or ConnectorRegistry()
        self.settings = settings or config
        self._clock = clock
        self._locks: Dict[_Key, asyncio.Lock] = {}
        self._inflight: Dict[_Key, asyncio.Future] = {}
        # bumped on removal while a refresh is in flight so it cannot re-store the credential
        self._generation: Dict[_Key, int] = {}
        self._unlink_listeners: List[UnlinkListener] = []

    # ── Wiring ──────────────────────────────────────────────────────────

    def connector(self, provider: Provider) -> BaseConnector:
        conn = self.registry.get(provider)
        if conn is None:
            raise ConfigurationError(f"No connector registered for {provider}", provider=provider.value)
        return conn

    def add_unlink_listener(self, listener: UnlinkListener) -> None:
        """Call ``listener(user_id, provider)`` after a credential is removed."""
        self._unlink_listeners.append(listener)

    # ── Connect ─────────────────────────────────────────────────────────

    def begin_authorization(self, user_id: str, provider: Provider, state: Optional[str] = None) -> str:
        return self.connector(provider).get_auth_url(user_id, state=state)

    async def complete_authorization(self, code: str, user_id: str, provider: Provider) -> Credential:
        """
        Exchange the callback code and store the resulting credential.

        Nothing is written when the exchange fails.
        """
        credential = await self.connector(provider).exchange_code(code, user_id)
        await self.save(credential)
        logger.info("Linked %s for user %s", provider.value, user_id)
        return credential

    async def save(self, credential: Credential) -> None:
        await self.store.upsert(credential)

    async def remove(self, user_id: str, provider: Provider) -> bool:
        key = (user_id, provider)
        if key in self._inflight:
            self._generation[key] = self._generation.get(key, 0) + 1
        removed = await self.store.delete(user_id, provider)
        for listener in self._unlink_listeners:
            await listener(user_id, provider)
        return removed

    async def disconnect(self, user_id: str, provider: Provider) -> bool:
        """
        Best-effort remote revocation, then local removal (authoritative).
        Returns True if a credential was on file.
        """
        credential = await self.store.get(user_id, provider)
        if credential is not None:
            try:
                await self.connector(provider).revoke(credential)
            except Exception as exc:
                logger.warning("Remote revoke failed for %s/%s: %s", provider.value, user_id, exc)
        removed = await self.remove(user_id, provider)
        logger.info("Disconnected %s for user %s", provider.value, user_id)
        return removed

    # ── State ───────────────────────────────────────────────────────────

    def _margin(self) -> timedelta:
        return timedelta(seconds=self.settings.token_refresh_margin_seconds)

    def state_of(self, credential: Optional[Credential]) -> LinkState:
        if credential is None:
            return LinkState.UNLINKED
        if credential.expires_at is None:
            return LinkState.VALID
        now = self._clock()
        if credential.expires_at > now + self._margin():
            return LinkState.VALID
        if credential.expires_at > now:
            return LinkState.EXPIRING
        return LinkState.EXPIRED

    async def link_state(self, user_id: str, provider: Provider) -> LinkState:
        return self.state_of(await self.store.get(user_id, provider))

    async def is_linked(self, user_id: str, provider: Provider) -> bool:
        return await self.store.get(user_id, provider) is not None

    async def linked_services(self, user_id: str) -> List[LinkedService]:
        services = []
        for provider in await self.store.list_providers(user_id):
            credential = await self.store.get(user_id, provider)
            if credential is None:
                continue
            services.append(
                LinkedService(
                    provider=provider,
                    state=self.state_of(credential),
                    expires_at=credential.expires_at,
                )
            )
        return services

    # ── Access tokens ───────────────────────────────────────────────────

    async def get_valid_access_token(self, user_id: str, provider: Provider) -> str:
        """
        Return an access token that is valid for at least the safety margin.

        1. No credential on file → ``NotLinked``.
        2. No expiry, or expiry beyond the margin → stored token.
        3. Otherwise refresh (once, shared by concurrent callers); on
           failure → ``ReauthorizationRequired``.
        """
        credential = await self.store.get(user_id, provider)
        if credential is None:
            raise NotLinked(f"{provider.value} is not linked for user {user_id}", provider=provider.value)
        if self.state_of(credential) is LinkState.VALID:
            return credential.access_token
        return await self._shared_refresh(credential.key)

    async def _shared_refresh(self, key: _Key) -> str:
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._refresh_locked(key, self._generation.get(key, 0)))
            self._inflight[key] = future
            future.add_done_callback(lambda f, k=key: self._refresh_done(k, f))
        # one caller going away must not cancel the refresh for the others
        return await asyncio.shield(future)

    def _refresh_done(self, key: _Key, future: asyncio.Future) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
            self._generation.pop(key, None)
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]
        if not future.cancelled():
            future.exception()  # mark retrieved; awaiting callers re-raise it

    def _lock_for(self, key: _Key) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _refresh_locked(self, key: _Key, generation: int) -> str:
        user_id, provider = key
        async with self._lock_for(key):
            # re-read: another refresh may have finished, or the user disconnected
            credential = await self.store.get(user_id, provider)
            if credential is None:
                raise NotLinked(f"{provider.value} is not linked for user {user_id}", provider=provider.value)
            if self.state_of(credential) is LinkState.VALID:
                return credential.access_token

            try:
                refreshed = await self.connector(provider).refresh_token(credential)
            except AuthExchangeError as exc:
                logger.warning("Token refresh failed for %s/%s: %s", provider.value, user_id, exc)
                raise ReauthorizationRequired(
                    f"{provider.value} refresh failed for user {user_id}",
                    provider=provider.value,
                ) from exc

            if self._generation.get(key, 0) != generation:
                raise self._disconnected_during_refresh(key)
            await self.store.upsert(refreshed)
            if self._generation.get(key, 0) != generation:
                await self.store.delete(user_id, provider)
                raise self._disconnected_during_refresh(key)
            logger.info("Refreshed %s token for user %s", provider.value, user_id)
            return refreshed.access_token

    def _disconnected_during_refresh(self, key: _Key) -> NotLinked:
        user_id, provider = key
        logger.info(
            "Discarding refreshed %s token for user %s: disconnected during refresh",
            provider.value,
            user_id,
        )
        return NotLinked(f"{provider.value} is not linked for user {user_id}", provider=provider.value)
