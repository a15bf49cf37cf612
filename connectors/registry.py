"""
ConnectorRegistry — provider-id → adapter lookup.

Adding a provider means adding a ``Provider`` member and a connector here;
the token manager and sync engine never branch on provider names.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from connectors.apple_music import AppleMusicConnector
from connectors.base import BaseConnector
from connectors.spotify import SpotifyConnector
from utils.schemas import Provider, ProviderInfo

logger = logging.getLogger(__name__)

# ── All known connectors — add new ones here ─────────────────────────────


def _default_connectors() -> List[BaseConnector]:
    return [
        SpotifyConnector(),
        AppleMusicConnector(),
    ]


def parse_provider(value: Union[str, Provider]) -> Optional[Provider]:
    """Map a path/query string onto the closed provider set (None if unknown)."""
    if isinstance(value, Provider):
        return value
    try:
        return Provider(value)
    except ValueError:
        return None


class ConnectorRegistry:
    """Singleton registry for all provider adapters."""

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._connectors = {}
            cls._instance._discovered = False
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Forget every registered connector (tests)."""
        cls._instance = None

    def discover(self) -> None:
        """Register the built-in connectors, warning about unconfigured ones."""
        if self._discovered:
            return
        for conn in _default_connectors():
            self._connectors.setdefault(conn.provider, conn)
            if conn.is_configured():
                logger.info("Connector registered: %s (%s)", conn.display_name, conn.provider.value)
            else:
                logger.warning(
                    "Connector %s registered but not configured (missing client_id/secret/redirect_uri)",
                    conn.provider.value,
                )
        self._discovered = True

    def register(self, connector: BaseConnector) -> None:
        """Register (or replace) the adapter for ``connector.provider``."""
        self._connectors[connector.provider] = connector

    def get(self, provider: Union[str, Provider]) -> Optional[BaseConnector]:
        """Get a connector by provider id."""
        if not self._discovered:
            self.discover()
        key = parse_provider(provider)
        if key is None:
            return None
        return self._connectors.get(key)

    def list_providers(self) -> List[ProviderInfo]:
        """Return info about all known providers."""
        if not self._discovered:
            self.discover()
        return [
            ProviderInfo(
                provider=c.provider,
                display_name=c.display_name,
                configured=c.is_configured(),
            )
            for c in self._connectors.values()
        ]

    def list_configured(self) -> List[Provider]:
        if not self._discovered:
            self.discover()
        return [p for p, c in self._connectors.items() if c.is_configured()]
