"""
Server-sent events for merged tables.

A stream opens with one "snapshot" event holding the merged collection, then one event per
change (insert, update, delete) to that collection, whether it was pushed by a write in this
process or found by the periodic refetch. A comment line is sent when nothing happened for a while so
proxies keep the connection open.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from admitflow.db.session import get_reconciliation
from admitflow.sync.channel import QUEUE_MAXSIZE, queue_writer
from admitflow.sync.reconciliation import LIVE_TABLES, ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/realtime", tags=["realtime"])

KEEPALIVE_SECONDS = 15.0


def format_sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def event_stream(
    recon: ReconciliationService,
    table: str,
    request: Request = None,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_MAXSIZE)
    view = await recon.open_view(table, listener=queue_writer(queue))
    try:
        yield format_sse(
            "snapshot",
            {"table": table, "items": [r.model_dump(mode="json") for r in view.records()]},
        )
        while True:
            if request is not None and await request.is_disconnected():
                break
            try:
                note = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse(note.event.value, note.to_payload())
    finally:
        await recon.close_view(view)
        logger.debug("Realtime stream for %s closed", table)


@router.get("/{table}")
async def stream_table(
    table: str,
    request: Request,
    recon: ReconciliationService = Depends(get_reconciliation),
) -> StreamingResponse:
    """Stream changes to admissions, enquiries or students."""
    if table not in LIVE_TABLES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown table {table}")
    return StreamingResponse(
        event_stream(recon, table, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{table}/snapshot")
async def table_snapshot(
    table: str,
    recon: ReconciliationService = Depends(get_reconciliation),
) -> Dict[str, Any]:
    """The merged collection as the stream would open with it."""
    if table not in LIVE_TABLES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown table {table}")
    records = await recon.fetcher(table)()
    return {"table": table, "items": [r.model_dump(mode="json") for r in records], "total": len(records)}
