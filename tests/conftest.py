from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from admitflow.core.config import Settings
from admitflow.db.local_buffer import LocalBuffer
from admitflow.db.remote import RemoteStore
from admitflow.db.session import build_engine, create_local_tables, create_remote_tables
from admitflow.db.writer import RecordWriter
from admitflow.main import create_app, init_services, shutdown_services
from admitflow.sync.reconciliation import ReconciliationService


def sqlite_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


async def run_ddl(engine: AsyncEngine, *statements: str) -> None:
    """Create hand-written tables to simulate a remote schema that lacks columns."""
    async with engine.begin() as conn:
        for stmt in statements:
            await conn.execute(text(stmt))


@pytest.fixture()
async def remote_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Remote store with the full known schema."""
    engine = build_engine(sqlite_url(tmp_path / "remote.db"))
    await create_remote_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def bare_remote_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Remote store with no tables; tests create the schema they need."""
    engine = build_engine(sqlite_url(tmp_path / "bare.db"))
    yield engine
    await engine.dispose()


@pytest.fixture()
async def local_buffer(tmp_path) -> AsyncGenerator[LocalBuffer, None]:
    engine = build_engine(sqlite_url(tmp_path / "buffer.db"))
    await create_local_tables(engine)
    buffer = LocalBuffer(engine)
    yield buffer
    await buffer.dispose()


@pytest.fixture()
def remote_store(remote_engine: AsyncEngine) -> RemoteStore:
    return RemoteStore(remote_engine)


@pytest.fixture()
def offline_store() -> RemoteStore:
    return RemoteStore(None)


@pytest.fixture()
def recon(remote_store: RemoteStore, local_buffer: LocalBuffer) -> ReconciliationService:
    return ReconciliationService(remote_store, local_buffer, poll_interval=0)


@pytest.fixture()
def writer(remote_store: RemoteStore, local_buffer: LocalBuffer) -> RecordWriter:
    return RecordWriter(remote_store, local_buffer)


def _settings(tmp_path, with_remote: bool) -> Settings:
    return Settings(
        DATABASE_URL=sqlite_url(tmp_path / "app_remote.db") if with_remote else None,
        LOCAL_BUFFER_URL=sqlite_url(tmp_path / "app_buffer.db"),
        CREATE_TABLES=True,
        POLL_INTERVAL_SECONDS=0,
        PUBLIC_API_BASE_URL=None,
    )


@pytest.fixture()
async def app(tmp_path):
    """App wired to a temporary remote store and buffer. ASGITransport skips lifespan, so wire it here."""
    config = _settings(tmp_path, with_remote=True)
    application = create_app(config)
    await init_services(application, config)
    yield application
    await shutdown_services(application)


@pytest.fixture()
async def offline_app(tmp_path):
    """App with no relational store configured: every write is buffered locally."""
    config = _settings(tmp_path, with_remote=False)
    application = create_app(config)
    await init_services(application, config)
    yield application
    await shutdown_services(application)


@pytest.fixture()
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def offline_client(offline_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=offline_app), base_url="http://test") as ac:
        yield ac
