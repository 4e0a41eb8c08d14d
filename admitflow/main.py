import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from admitflow.api.v1.admissions.ingest import IngestGateway
from admitflow.api.v1.admissions.router import router as admissions_router
from admitflow.api.v1.certificates.router import router as certificates_router
from admitflow.api.v1.enquiries.router import router as enquiries_router
from admitflow.api.v1.public.router import router as public_router
from admitflow.api.v1.realtime.router import router as realtime_router
from admitflow.api.v1.students.router import router as students_router
from admitflow.core.config import Settings, settings
from admitflow.db.local_buffer import LocalBuffer
from admitflow.db.public_api import PublicApiClient
from admitflow.db.remote import RemoteStore
from admitflow.db.session import build_engine, create_local_tables, create_remote_tables
from admitflow.db.writer import RecordWriter
from admitflow.sync.reconciliation import ReconciliationService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def init_services(app: FastAPI, config: Settings) -> None:
    """Build the stores and services the routers depend on and attach them to app.state."""
    remote_engine = build_engine(config.database_url)
    if remote_engine is not None and config.create_tables:
        await create_remote_tables(remote_engine)
    local_engine = build_engine(config.local_buffer_url)
    await create_local_tables(local_engine)

    remote = RemoteStore(remote_engine)
    local = LocalBuffer(local_engine)
    public_api = (
        PublicApiClient(config.public_api_base_url, timeout=config.public_api_timeout_seconds)
        if config.public_api_base_url
        else None
    )
    recon = ReconciliationService(remote, local, public_api=public_api, poll_interval=config.poll_interval_seconds)

    app.state.remote_store = remote
    app.state.local_buffer = local
    app.state.public_api = public_api
    app.state.reconciliation = recon
    app.state.ingest_gateway = IngestGateway(
        remote,
        local,
        public_api=public_api,
        tracking_table=config.tracking_table,
        on_record=recon.admission_stored,
    )
    app.state.record_writer = RecordWriter(remote, local)
    logger.info(
        "Services ready (remote store: %s, public API: %s)",
        "configured" if remote.available else "none",
        "configured" if public_api is not None else "none",
    )


async def shutdown_services(app: FastAPI) -> None:
    await app.state.ingest_gateway.drain()
    await app.state.reconciliation.close()
    if app.state.public_api is not None:
        await app.state.public_api.aclose()
    await app.state.remote_store.dispose()
    await app.state.local_buffer.dispose()


def create_app(config: Optional[Settings] = None) -> FastAPI:
    config = config or settings
    configure_logging(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_services(app, config)
        yield
        await shutdown_services(app)

    app = FastAPI(title="Admissions Backend", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(admissions_router)
    app.include_router(enquiries_router)
    app.include_router(students_router)
    app.include_router(certificates_router)
    app.include_router(public_router)
    app.include_router(realtime_router)

    return app


app = create_app()
