"""
Service-link API routes — providers, connect/callback, linked services, disconnect.

Route prefix: /api/v1/services
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.dependencies import get_sync_engine, get_token_manager
from auth.dependencies import get_current_user_id
from auth.signing import InvalidSignature, sign, verify
from config.settings import config
from connectors.registry import ConnectorRegistry, parse_provider
from connectors.token_manager import TokenManager
from library.sync_engine import SyncEngine
from utils.schemas import LinkedService, Provider, ProviderInfo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["services"])

# ── State token helpers (CSRF protection) ──────────────────────────────


def create_state(user_id: str, provider: Provider) -> str:
    """Opaque state bound to the user and provider, valid for a few minutes."""
    return sign(
        {"user_id": user_id, "provider": provider.value},
        config.oauth_state_secret,
        config.oauth_state_ttl_seconds,
    )


def verify_state(state: str, provider: Provider) -> str:
    """Verify a callback state, return user_id. Raises HTTP 400 on failure."""
    try:
        payload = verify(state, config.oauth_state_secret)
        if payload.get("provider") != provider.value or not payload.get("user_id"):
            raise InvalidSignature("state does not match this provider")
        return payload["user_id"]
    except InvalidSignature as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid or expired OAuth state: {exc}",
        ) from exc


def provider_or_404(provider: str) -> Provider:
    parsed = parse_provider(provider)
    if parsed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider '{provider}' not found",
        )
    return parsed


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers", response_model=List[ProviderInfo])
async def list_providers() -> List[ProviderInfo]:
    """
    List all providers and whether the server is configured for them.
    No auth required — used by the frontend to show connect buttons.
    """
    return ConnectorRegistry().list_providers()


@router.get("", response_model=List[LinkedService])
async def list_linked_services(
    user_id: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(get_token_manager),
) -> List[LinkedService]:
    """Linked providers for the authenticated user, with token state."""
    return await tokens.linked_services(user_id)


@router.get("/{provider}/auth-url")
async def get_auth_url(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(get_token_manager),
) -> Dict[str, str]:
    """
    Get the authorization URL for a provider.

    The frontend redirects (or opens a popup) to this URL.
    """
    p = provider_or_404(provider)
    auth_url = tokens.begin_authorization(user_id, p, state=create_state(user_id, p))
    return {"auth_url": auth_url, "provider": p.value}


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: str = Query(...),
    state: str = Query(...),
    tokens: TokenManager = Depends(get_token_manager),
    sync_engine: SyncEngine = Depends(get_sync_engine),
) -> Dict[str, Any]:
    """
    OAuth callback — the provider redirects here after consent.

    Exchanges the code, stores the credential and starts the first
    library sync in the background.
    """
    p = provider_or_404(provider)
    user_id = verify_state(state, p)

    await tokens.complete_authorization(code, user_id, p)
    sync_engine.schedule_sync(user_id, p)

    logger.info("Service connected: user=%s provider=%s", user_id, p.value)
    return {"status": "connected", "provider": p.value, "syncing": True}


@router.delete("/{provider}")
async def disconnect_service(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(get_token_manager),
) -> Dict[str, Any]:
    """Disconnect a provider: revoke remotely (best-effort), drop credential and library."""
    p = provider_or_404(provider)
    removed = await tokens.disconnect(user_id, p)
    return {"status": "disconnected", "provider": p.value, "removed": removed}
