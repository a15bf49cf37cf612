"""
Shared fixtures: settings, in-memory database, fake credential store.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.settings import Settings
from connectors.encryption import reset_cipher
from connectors.registry import ConnectorRegistry
from database.session import init_db

from tests.factories import MemoryCredentialStore


@pytest.fixture
def settings() -> Settings:
    return Settings(
        spotify_client_id="spotify-cid",
        spotify_client_secret="spotify-secret",
        spotify_redirect_uri="http://localhost:8000/api/v1/services/spotify/callback",
        apple_music_client_id="apple-cid",
        apple_music_client_secret="apple-secret",
        apple_music_redirect_uri="http://localhost:8000/api/v1/services/apple-music/callback",
        apple_music_developer_token="dev-token",
        token_refresh_margin_seconds=60,
        sync_max_attempts=3,
        sync_backoff_base_seconds=0.5,
    )


@pytest.fixture
def memory_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture(autouse=True)
def _reset_singletons():
    ConnectorRegistry.reset()
    reset_cipher()
    yield
    ConnectorRegistry.reset()
    reset_cipher()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
