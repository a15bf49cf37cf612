"""
FastAPI dependencies (shared across routes).

The core components are process-wide singletons: the refresh locks and
the library cache only work if every request sees the same instances.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.credential_store import CredentialStore
from connectors.registry import ConnectorRegistry
from connectors.token_manager import TokenManager
from library.cache import LibraryCache
from library.store import SnapshotStore
from library.sync_engine import SyncEngine


@dataclass
class Services:
    token_manager: TokenManager
    sync_engine: SyncEngine


_services: Optional[Services] = None


def build_services(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    registry: Optional[ConnectorRegistry] = None,
) -> Services:
    """Wire store → token manager → sync engine, with disconnect cascading to the library."""
    token_manager = TokenManager(CredentialStore(session_factory), registry or ConnectorRegistry())
    sync_engine = SyncEngine(token_manager, LibraryCache(), SnapshotStore(session_factory))
    token_manager.add_unlink_listener(sync_engine.forget)
    return Services(token_manager=token_manager, sync_engine=sync_engine)


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def get_token_manager(services: Services = Depends(get_services)) -> TokenManager:
    return services.token_manager


def get_sync_engine(services: Services = Depends(get_services)) -> SyncEngine:
    return services.sync_engine
