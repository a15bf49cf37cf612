"""
Library API routes — cached view with background refresh, manual sync, invalidate.

Route prefix: /api/v1/library
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.dependencies import get_sync_engine, get_token_manager
from auth.dependencies import get_current_user_id
from config.settings import config
from connectors.errors import NotLinked
from connectors.routes import provider_or_404
from connectors.token_manager import TokenManager
from library.query import query_library
from library.sync_engine import SyncEngine
from utils.schemas import LibraryView

logger = logging.getLogger(__name__)

router = APIRouter(tags=["library"])


@router.get("/{provider}", response_model=LibraryView)
async def get_library(
    provider: str,
    q: str = Query("", max_length=200),
    sort: Optional[str] = Query("name-asc"),
    kind: str = Query("all"),
    max_age: Optional[int] = Query(None, ge=0, description="Staleness window in seconds"),
    user_id: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(get_token_manager),
    sync_engine: SyncEngine = Depends(get_sync_engine),
) -> LibraryView:
    """
    Cached library view.

    Served from cache immediately; when the snapshot is missing, invalidated
    or older than ``max_age`` a background sync is started and the response
    says ``syncing: true``.
    """
    p = provider_or_404(provider)
    if not await tokens.is_linked(user_id, p):
        raise NotLinked(f"{p.value} is not linked", provider=p.value)

    try:
        query_library(None, p, sort=sort, kind=kind)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    window = timedelta(seconds=config.library_freshness_seconds if max_age is None else max_age)
    entry, syncing = sync_engine.get_or_refresh(user_id, p, window)
    return query_library(entry, p, query=q, sort=sort, kind=kind, syncing=syncing)


@router.post("/{provider}/sync", response_model=LibraryView)
async def sync_library(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    sync_engine: SyncEngine = Depends(get_sync_engine),
) -> LibraryView:
    """Run a sync now and return the fresh, unfiltered library."""
    p = provider_or_404(provider)
    await sync_engine.sync_library(user_id, p)
    return query_library(sync_engine.cache.peek(user_id, p), p)


@router.post("/{provider}/invalidate")
async def invalidate_library(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    sync_engine: SyncEngine = Depends(get_sync_engine),
) -> Dict[str, Any]:
    """Mark the cached snapshot stale; the next read triggers a background sync."""
    p = provider_or_404(provider)
    return {"provider": p.value, "invalidated": sync_engine.cache.invalidate(user_id, p)}
