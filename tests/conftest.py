"""Shared pytest fixtures for API, repository and pipeline tests."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["APP_ENV"] = "test"

from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.classifier import GeoLocator
from shortlink.config import Settings, get_settings
from shortlink.database import Base, create_engine_for_url
from shortlink.dependencies import ServiceManager, _service_manager
from shortlink.main import app
from shortlink.repository import LinkRepository


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    test_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'shortlink.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def repository(session_factory: async_sessionmaker[AsyncSession]) -> LinkRepository:
    return LinkRepository(session_factory)


@pytest_asyncio.fixture(scope="function")
async def manager(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    tmp_path: Path,
) -> AsyncGenerator[ServiceManager, None]:
    await _service_manager.cleanup()
    await _service_manager.initialize(
        session_factory=session_factory,
        geo_locator=GeoLocator(str(tmp_path / "missing.mmdb")),
        settings=settings,
    )
    yield _service_manager
    await _service_manager.cleanup()


@pytest_asyncio.fixture(scope="function")
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers(settings: Settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.ADMIN_TOKEN}"}
