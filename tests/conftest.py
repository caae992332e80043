"""Shared pytest configuration and fixtures.

Configures pytest-asyncio auto mode, an in-memory database shared by every
session of a test, a copy of the SSG fixture tree and an API client whose
store, bus and importer are bound to both.
"""

import shutil
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ssgkb.api.dependencies import get_bus, get_importer, get_store
from ssgkb.api.main import app
from ssgkb.db.models import Base
from ssgkb.db.store import SSGStore
from ssgkb.worker.fetcher import SourceFetcher
from ssgkb.worker.handlers import build_bus
from ssgkb.worker.importer import SSGImporter

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "ssg"


@pytest_asyncio.fixture
async def async_engine():
    """Create an async in-memory SQLite engine for testing.

    The store opens a new session per operation, so a StaticPool keeps every
    session on the same connection (and therefore the same database).
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def store(session_factory) -> SSGStore:
    return SSGStore(session_factory)


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A writable copy of the fixture content tree."""
    root = tmp_path / "ssg-static"
    shutil.copytree(FIXTURES_DIR, root)
    return root


@pytest.fixture
def fetcher(source_tree: Path) -> SourceFetcher:
    return SourceFetcher(root=source_tree, repo_url="")


@pytest.fixture
def bus(store, fetcher):
    return build_bus(store, fetcher)


@pytest_asyncio.fixture
async def importer(bus):
    importer = SSGImporter(bus, file_timeout=30.0, poll_interval=0.01)
    yield importer
    run = await importer.get_status()
    if run is not None and not run.state.is_terminal:
        await importer.stop()
    await importer.wait()


@pytest_asyncio.fixture
async def client(store, bus, importer):
    """Create a test HTTP client with overridden store, bus and importer."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_bus] = lambda: bus
    app.dependency_overrides[get_importer] = lambda: importer
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
