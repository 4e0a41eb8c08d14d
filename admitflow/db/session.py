from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import declarative_base

# Remote (primary relational store) tables.
Base = declarative_base()
# On-device buffer tables; always SQLite.
LocalBase = declarative_base()


def build_engine(url: Optional[str]) -> Optional[AsyncEngine]:
    """
    Create an async engine, or None when no URL is configured.

    pool_pre_ping: check connection is alive before use (avoids "connection is closed" errors
    when DB or network closed idle connections).
    pool_recycle: discard connections after this many seconds to avoid stale connections.
    """
    if not url:
        return None
    return create_async_engine(
        url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_recycle=300,
    )


async def create_remote_tables(engine: AsyncEngine) -> None:
    import admitflow.core.models  # noqa: F401  (registers tables on Base)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def create_local_tables(engine: AsyncEngine) -> None:
    import admitflow.core.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(LocalBase.metadata.create_all)


# ----- FastAPI dependencies: process-owned stores live on app.state -----

def get_remote_store(request: Request):
    return request.app.state.remote_store


def get_local_buffer(request: Request):
    return request.app.state.local_buffer


def get_reconciliation(request: Request):
    return request.app.state.reconciliation


def get_ingest_gateway(request: Request):
    return request.app.state.ingest_gateway


def get_record_writer(request: Request):
    return request.app.state.record_writer
