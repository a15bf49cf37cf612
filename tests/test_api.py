"""
End-to-end tests for the HTTP routes: connect flow, library view, sync,
invalidate and disconnect.
"""

from datetime import timedelta
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import pytest_asyncio

from api.dependencies import build_services, get_services
from auth.jwt import create_token
from connectors.registry import ConnectorRegistry
from connectors.routes import create_state
from connectors.spotify import SpotifyConnector
from main import create_app
from utils.schemas import Provider, utcnow

from tests.factories import make_credential

SAVED_ALBUMS = {
    "items": [
        {"album": {"id": "a1", "name": "Blue Train", "artists": [{"name": "John Coltrane"}], "total_tracks": 5}},
        {"album": {"id": "a2", "name": "Kind of Blue", "artists": [{"name": "Miles Davis"}], "total_tracks": 5}},
    ],
    "next": None,
}
PLAYLISTS = {"items": [{"id": "p1", "name": "Late Night", "tracks": {"total": 12}, "owner": {"id": "me"}}]}

AUTH = {"Authorization": f"Bearer {create_token('user-1')}"}
KEY = ("user-1", Provider.SPOTIFY)


@pytest_asyncio.fixture
async def api(settings, session_factory):
    token_responses = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "accounts.spotify.com":
            if token_responses:
                return token_responses.pop(0)
            return httpx.Response(200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 3600})
        if request.url.path == "/v1/me/albums":
            return httpx.Response(200, json=SAVED_ALBUMS)
        if request.url.path == "/v1/me/playlists":
            return httpx.Response(200, json=PLAYLISTS)
        return httpx.Response(404)

    registry = ConnectorRegistry()
    registry.register(SpotifyConnector(settings, transport=httpx.MockTransport(handler)))
    services = build_services(session_factory, registry)

    app = create_app()
    app.dependency_overrides[get_services] = lambda: services
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield SimpleNamespace(client=client, services=services, token_responses=token_responses)


async def _connect(api) -> httpx.Response:
    resp = await api.client.get(
        "/api/v1/services/spotify/callback",
        params={"code": "the-code", "state": create_state("user-1", Provider.SPOTIFY)},
    )
    await _drain(api)
    return resp


async def _drain(api) -> None:
    """Wait for a background sync, if one is still running."""
    task = api.services.sync_engine._background.get(KEY)
    if task is not None:
        await task


class TestProviders:
    @pytest.mark.asyncio
    async def test_lists_providers_without_auth(self, api):
        resp = await api.client.get("/api/v1/services/providers")
        assert resp.status_code == 200
        configured = {p["provider"]: p["configured"] for p in resp.json()}
        assert configured["spotify"] is True
        assert "apple-music" in configured

    @pytest.mark.asyncio
    async def test_auth_required(self, api):
        resp = await api.client.get("/api/v1/services/spotify/auth-url")
        assert resp.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_unknown_provider_is_404(self, api):
        resp = await api.client.get("/api/v1/services/tidal/auth-url", headers=AUTH)
        assert resp.status_code == 404


class TestConnectFlow:
    @pytest.mark.asyncio
    async def test_auth_url_carries_signed_state(self, api):
        resp = await api.client.get("/api/v1/services/spotify/auth-url", headers=AUTH)
        assert resp.status_code == 200
        params = parse_qs(urlparse(resp.json()["auth_url"]).query)
        assert params["client_id"] == ["spotify-cid"]
        assert params["state"][0] != "user-1"

        # the issued state is accepted by the callback
        callback = await api.client.get(
            "/api/v1/services/spotify/callback",
            params={"code": "the-code", "state": params["state"][0]},
        )
        assert callback.status_code == 200
        await _drain(api)

    @pytest.mark.asyncio
    async def test_callback_links_and_syncs(self, api):
        resp = await _connect(api)

        assert resp.status_code == 200
        assert resp.json() == {"status": "connected", "provider": "spotify", "syncing": True}
        linked = await api.client.get("/api/v1/services", headers=AUTH)
        assert [(s["provider"], s["state"]) for s in linked.json()] == [("spotify", "valid")]

        library = await api.client.get("/api/v1/library/spotify", headers=AUTH)
        body = library.json()
        assert [a["name"] for a in body["albums"]] == ["Blue Train", "Kind of Blue"]
        assert [p["name"] for p in body["playlists"]] == ["Late Night"]
        assert body["syncing"] is False

    @pytest.mark.asyncio
    async def test_tampered_state_is_rejected(self, api):
        resp = await api.client.get(
            "/api/v1/services/spotify/callback",
            params={"code": "c", "state": create_state("user-1", Provider.SPOTIFY) + "0"},
        )
        assert resp.status_code == 400
        assert not await api.services.token_manager.is_linked("user-1", Provider.SPOTIFY)

    @pytest.mark.asyncio
    async def test_state_for_other_provider_is_rejected(self, api):
        resp = await api.client.get(
            "/api/v1/services/spotify/callback",
            params={"code": "c", "state": create_state("user-1", Provider.APPLE_MUSIC)},
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_failed_exchange_links_nothing(self, api):
        api.token_responses.append(httpx.Response(400, json={"error": "invalid_grant"}))
        resp = await _connect(api)

        assert resp.status_code == 400
        assert resp.json()["error"] == "auth_exchange_failed"
        assert not await api.services.token_manager.is_linked("user-1", Provider.SPOTIFY)


class TestLibraryRoutes:
    @pytest.mark.asyncio
    async def test_not_linked(self, api):
        resp = await api.client.get("/api/v1/library/spotify", headers=AUTH)
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_linked"
        assert resp.json()["provider"] == "spotify"

    @pytest.mark.asyncio
    async def test_search_and_sort(self, api):
        await _connect(api)
        resp = await api.client.get(
            "/api/v1/library/spotify",
            params={"q": "blue", "sort": "artist-desc", "kind": "albums"},
            headers=AUTH,
        )
        body = resp.json()
        assert [a["artist_name"] for a in body["albums"]] == ["Miles Davis", "John Coltrane"]
        assert body["playlists"] == []

    @pytest.mark.asyncio
    async def test_invalid_sort_is_400(self, api):
        await _connect(api)
        resp = await api.client.get("/api/v1/library/spotify", params={"sort": "year-asc"}, headers=AUTH)
        assert resp.status_code == 400
        assert not api.services.sync_engine.is_syncing("user-1", Provider.SPOTIFY)

    @pytest.mark.asyncio
    async def test_invalidate_then_read_starts_sync(self, api):
        await _connect(api)

        resp = await api.client.post("/api/v1/library/spotify/invalidate", headers=AUTH)
        assert resp.json() == {"provider": "spotify", "invalidated": True}

        view = await api.client.get("/api/v1/library/spotify", headers=AUTH)
        body = view.json()
        assert body["stale"] is True
        assert body["syncing"] is True
        assert len(body["albums"]) == 2
        await _drain(api)

    @pytest.mark.asyncio
    async def test_manual_sync(self, api):
        await api.services.token_manager.save(make_credential(now=utcnow()))

        resp = await api.client.post("/api/v1/library/spotify/sync", headers=AUTH)

        assert resp.status_code == 200
        assert len(resp.json()["albums"]) == 2
        assert resp.json()["last_synced_at"] is not None

    @pytest.mark.asyncio
    async def test_failed_refresh_asks_for_reconnect(self, api):
        await api.services.token_manager.save(
            make_credential(now=utcnow(), expires_in=timedelta(seconds=-30))
        )
        api.token_responses.append(httpx.Response(400, json={"error": "invalid_grant"}))

        resp = await api.client.post("/api/v1/library/spotify/sync", headers=AUTH)

        assert resp.status_code == 401
        assert resp.json()["error"] == "reauthorization_required"
        linked = await api.client.get("/api/v1/services", headers=AUTH)
        assert linked.json()[0]["state"] == "expired"


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_drops_credential_and_library(self, api):
        await _connect(api)

        resp = await api.client.delete("/api/v1/services/spotify", headers=AUTH)

        assert resp.json() == {"status": "disconnected", "provider": "spotify", "removed": True}
        assert (await api.client.get("/api/v1/services", headers=AUTH)).json() == []
        assert api.services.sync_engine.cache.peek("user-1", Provider.SPOTIFY) is None
        library = await api.client.get("/api/v1/library/spotify", headers=AUTH)
        assert library.status_code == 404

    @pytest.mark.asyncio
    async def test_disconnect_when_not_linked(self, api):
        resp = await api.client.delete("/api/v1/services/spotify", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["removed"] is False
