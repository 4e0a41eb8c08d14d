"""
On-device buffer for writes that could not reach the remote store.
Rows survive restarts; sync replays them and marks them synced instead of deleting them.
"""

import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from admitflow.core.exceptions import NotFound
from admitflow.core.models.pending_record import SYNC_PENDING, SYNC_SYNCED, PendingRecord

logger = logging.getLogger(__name__)


def new_local_id() -> str:
    """local-<epoch ms>-<6 hex>; the suffix keeps ids unique within one millisecond."""
    return f"local-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class LocalBuffer:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def add(self, entity: str, payload: Dict[str, Any], record_id: Optional[str] = None) -> PendingRecord:
        row = PendingRecord(
            id=record_id or new_local_id(),
            entity=entity,
            payload=jsonable_encoder(payload),
            sync_state=SYNC_PENDING,
            attempts=0,
            created_at=datetime.utcnow(),
            updated_at=datetime.utcnow(),
        )
        async with self._sessions() as session:
            session.add(row)
            await session.commit()
        logger.info("Buffered %s locally as %s", entity, row.id)
        return row

    async def list(self, entity: str, sync_state: Optional[str] = None) -> List[PendingRecord]:
        stmt = select(PendingRecord).where(PendingRecord.entity == entity)
        if sync_state:
            stmt = stmt.where(PendingRecord.sync_state == sync_state)
        stmt = stmt.order_by(PendingRecord.created_at)
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get(self, record_id: str) -> Optional[PendingRecord]:
        async with self._sessions() as session:
            return await session.get(PendingRecord, record_id)

    async def update_payload(self, record_id: str, changes: Dict[str, Any]) -> PendingRecord:
        """Merge `changes` into the stored payload. Synced rows go back to pending."""
        async with self._sessions() as session:
            row = await session.get(PendingRecord, record_id)
            if row is None:
                raise NotFound(f"Local record {record_id} not found")
            payload = dict(row.payload or {})
            payload.update(jsonable_encoder(changes))
            row.payload = payload
            row.sync_state = SYNC_PENDING
            row.updated_at = datetime.utcnow()
            await session.commit()
            return row

    async def mark_synced(self, record_id: str, remote_id: Optional[str]) -> None:
        async with self._sessions() as session:
            row = await session.get(PendingRecord, record_id)
            if row is None:
                return
            row.sync_state = SYNC_SYNCED
            row.remote_id = remote_id
            row.last_error = None
            row.updated_at = datetime.utcnow()
            await session.commit()

    async def mark_failed(self, record_id: str, error: str) -> None:
        async with self._sessions() as session:
            row = await session.get(PendingRecord, record_id)
            if row is None:
                return
            row.attempts = (row.attempts or 0) + 1
            row.last_error = error
            row.updated_at = datetime.utcnow()
            await session.commit()

    async def delete(self, record_id: str) -> bool:
        async with self._sessions() as session:
            row = await session.get(PendingRecord, record_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def dispose(self) -> None:
        await self._engine.dispose()
