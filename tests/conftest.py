"""Shared test fixtures for Fanout."""

from __future__ import annotations

import base64
import io
import os
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fanout.config import Settings
from fanout.main import create_app
from fanout.models.base import Base
from fanout.services.auth_service import create_access_token

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from fanout.platforms.registry import PlatformRegistry

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"

# BIP-340 test vector: secret key 3.
NOSTR_PRIVATE_KEY = "0" * 63 + "3"
NOSTR_PUBLIC_KEY = "f9308a019258c31049344f85f89d5229b531c845836f99b08601f113bce036f9"


def make_image_bytes(
    width: int = 32,
    height: int = 24,
    fmt: str = "PNG",
    noise: bool = False,
) -> bytes:
    """Render a test image; ``noise`` makes it hard to compress."""
    if noise:
        img = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    else:
        img = Image.new("RGB", (width, height), color=(200, 30, 90))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def make_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode()}"


def auth_headers(user_id: str, secret_key: str = TEST_SECRET_KEY) -> dict[str, str]:
    token = create_access_token({"sub": user_id}, secret_key)
    return {"Authorization": f"Bearer {token}"}


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    registry: PlatformRegistry | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB, registry,
    post log writer) because ASGITransport does not trigger it.
    """
    from fanout.database import create_engine as create_db_engine
    from fanout.platforms.registry import create_default_registry
    from fanout.services.post_log_service import QueuedPostLogSink

    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.registry = registry if registry is not None else create_default_registry()
    post_log = QueuedPostLogSink(session_factory, maxsize=settings.post_log_queue_size)
    post_log.start()
    app.state.post_log = post_log

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await post_log.stop()
    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        secret_key=TEST_SECRET_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
