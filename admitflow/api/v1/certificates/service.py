"""
Certificate requests.

Flow: requested -> pending_approval -> approved -> printing -> ready_for_collection -> delivered.
Steps may be skipped forward; cancelled is reachable from any state before delivered.
Each change stamps its timestamp column and appends to status_history.
Rows live in the certificates table, or in the local buffer while the store is unreachable.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from admitflow.core.enums import CertificateStatus
from admitflow.core.exceptions import (
    InvalidTransition,
    NetworkUnavailable,
    NotFound,
    SchemaRejection,
    ServiceError,
    describe_error,
)
from admitflow.core.models.pending_record import SYNC_PENDING
from admitflow.db.local_buffer import LocalBuffer
from admitflow.db.remote import RemoteStore
from admitflow.sync.normalize import coerce_enum, parse_datetime, parse_json

from .schemas import (
    CertificateCreate,
    CertificateItem,
    CertificateListResponse,
    CertificateResponse,
    CertificateStatusUpdate,
    StatusHistoryEntry,
)

logger = logging.getLogger(__name__)

ENTITY_CERTIFICATE = "certificate"
TABLE_CERTIFICATES = "certificates"

CERTIFICATE_FLOW: Tuple[CertificateStatus, ...] = (
    CertificateStatus.REQUESTED,
    CertificateStatus.PENDING_APPROVAL,
    CertificateStatus.APPROVED,
    CertificateStatus.PRINTING,
    CertificateStatus.READY_FOR_COLLECTION,
    CertificateStatus.DELIVERED,
)
TERMINAL_STATES = frozenset({CertificateStatus.DELIVERED, CertificateStatus.CANCELLED})

STATUS_TIMESTAMPS: Dict[CertificateStatus, str] = {
    CertificateStatus.APPROVED: "approved_at",
    CertificateStatus.PRINTING: "printing_started_at",
    CertificateStatus.READY_FOR_COLLECTION: "ready_at",
    CertificateStatus.DELIVERED: "delivered_at",
    CertificateStatus.CANCELLED: "cancelled_at",
}


def new_certificate_id() -> str:
    return f"CERT-{int(time.time() * 1000)}-{uuid.uuid4().hex[:4]}"


def check_certificate_transition(current: CertificateStatus, target: CertificateStatus) -> None:
    if current in TERMINAL_STATES:
        raise InvalidTransition(ENTITY_CERTIFICATE, current.value, target.value)
    if target == CertificateStatus.CANCELLED:
        return
    if CERTIFICATE_FLOW.index(target) <= CERTIFICATE_FLOW.index(current):
        raise InvalidTransition(ENTITY_CERTIFICATE, current.value, target.value)


def _history_entry(status: CertificateStatus, at: datetime, by: Optional[str], note: Optional[str]) -> Dict[str, Any]:
    return {"status": status.value, "at": at.isoformat(), "by": by, "note": note}


def _item_from_row(row: Mapping[str, Any], pending_sync: bool = False) -> CertificateItem:
    requested = parse_datetime(row.get("requested_at")) or parse_datetime(row.get("created_at")) or datetime.now(timezone.utc)
    history = []
    for entry in parse_json(row.get("status_history")) or []:
        if not isinstance(entry, dict) or not entry.get("status"):
            continue
        history.append(
            StatusHistoryEntry(
                status=str(entry["status"]),
                at=parse_datetime(entry.get("at")) or requested,
                by=entry.get("by"),
                note=entry.get("note"),
            )
        )
    metadata = parse_json(row.get("metadata"))
    return CertificateItem(
        id=str(row["id"]),
        student_id=row.get("student_id"),
        batch_id=row.get("batch_id"),
        course_id=row.get("course_id"),
        certificate_type=row.get("certificate_type"),
        requester_name=row.get("requester_name"),
        requester_email=row.get("requester_email"),
        requested_at=requested,
        status=coerce_enum(CertificateStatus, row.get("status"), CertificateStatus.REQUESTED),
        approved_by=row.get("approved_by"),
        approved_at=parse_datetime(row.get("approved_at")),
        printing_started_at=parse_datetime(row.get("printing_started_at")),
        ready_at=parse_datetime(row.get("ready_at")),
        delivered_at=parse_datetime(row.get("delivered_at")),
        cancelled_at=parse_datetime(row.get("cancelled_at")),
        notes=row.get("notes"),
        metadata=metadata if isinstance(metadata, dict) else None,
        status_history=history,
        updated_at=parse_datetime(row.get("updated_at")),
        pending_sync=pending_sync,
    )


def _row_from_item(item: CertificateItem) -> Dict[str, Any]:
    row = item.model_dump(exclude={"pending_sync", "status_history"})
    row["status"] = item.status.value
    row["status_history"] = [h.model_dump(mode="json") for h in item.status_history]
    return row


# ----- Storage -----

async def _remote_items(remote: RemoteStore) -> List[CertificateItem]:
    if not remote.available:
        return []
    try:
        rows = await remote.fetch_rows(TABLE_CERTIFICATES)
    except (NetworkUnavailable, SchemaRejection) as e:
        logger.warning("Certificates table unavailable: %s", describe_error(e))
        return []
    return [_item_from_row(r) for r in rows if r.get("id") is not None]


async def _local_items(local: LocalBuffer) -> List[CertificateItem]:
    items = []
    for pending in await local.list(ENTITY_CERTIFICATE, SYNC_PENDING):
        row = dict(pending.payload or {})
        row["id"] = pending.id
        items.append(_item_from_row(row, pending_sync=True))
    return items


async def _keep_locally(local: LocalBuffer, item: CertificateItem) -> CertificateItem:
    row = _row_from_item(item)
    if await local.get(item.id) is not None:
        await local.update_payload(item.id, row)
    else:
        await local.add(ENTITY_CERTIFICATE, row, record_id=item.id)
    return item.model_copy(update={"pending_sync": True})


async def _upsert_remote(remote: RemoteStore, item: CertificateItem) -> None:
    row = _row_from_item(item)
    values = {k: v for k, v in row.items() if k != "id"}
    updated = await remote.update_rows(TABLE_CERTIFICATES, ("id",), item.id, values)
    if updated is None:
        await remote.insert_row(TABLE_CERTIFICATES, row)


async def _store(remote: RemoteStore, local: LocalBuffer, item: CertificateItem) -> CertificateItem:
    if remote.available and await local.get(item.id) is None:
        try:
            await _upsert_remote(remote, item)
            return item.model_copy(update={"pending_sync": False})
        except (NetworkUnavailable, SchemaRejection) as e:
            logger.warning("Certificate %s kept locally: %s", item.id, describe_error(e))
    return await _keep_locally(local, item)


# ----- Operations -----

async def create_certificate(remote: RemoteStore, local: LocalBuffer, payload: CertificateCreate) -> CertificateResponse:
    now = datetime.now(timezone.utc)
    item = CertificateItem(
        id=new_certificate_id(),
        **payload.model_dump(),
        requested_at=now,
        status=CertificateStatus.REQUESTED,
        status_history=[StatusHistoryEntry(status=CertificateStatus.REQUESTED.value, at=now)],
        updated_at=now,
    )
    return CertificateResponse(item=await _store(remote, local, item))


async def list_certificates(
    remote: RemoteStore,
    local: LocalBuffer,
    status_filter: Optional[str] = None,
    student_id: Optional[str] = None,
) -> CertificateListResponse:
    """Remote rows overlaid with locally pending copies, newest request first."""
    merged: Dict[str, CertificateItem] = {i.id: i for i in await _remote_items(remote)}
    for item in await _local_items(local):
        merged[item.id] = item
    items = sorted(merged.values(), key=lambda i: i.requested_at, reverse=True)
    if status_filter:
        items = [i for i in items if i.status.value == status_filter.lower()]
    if student_id:
        items = [i for i in items if i.student_id == student_id]
    return CertificateListResponse(items=items)


async def get_certificate(remote: RemoteStore, local: LocalBuffer, certificate_id: str) -> CertificateItem:
    pending = await local.get(certificate_id)
    if pending is not None and pending.entity == ENTITY_CERTIFICATE and pending.sync_state == SYNC_PENDING:
        return _item_from_row({**(pending.payload or {}), "id": pending.id}, pending_sync=True)
    if remote.available:
        try:
            row = await remote.fetch_one(TABLE_CERTIFICATES, ("id",), certificate_id)
        except NetworkUnavailable as e:
            logger.warning("Certificate lookup fell back to local only: %s", e.message)
            row = None
        if row is not None:
            return _item_from_row(row)
    raise NotFound("Certificate not found")


async def update_status(
    remote: RemoteStore,
    local: LocalBuffer,
    certificate_id: str,
    payload: CertificateStatusUpdate,
) -> CertificateResponse:
    item = await get_certificate(remote, local, certificate_id)
    check_certificate_transition(item.status, payload.status)
    now = datetime.now(timezone.utc)
    updates: Dict[str, Any] = {"status": payload.status, "updated_at": now}
    stamp = STATUS_TIMESTAMPS.get(payload.status)
    if stamp:
        updates[stamp] = now
    if payload.status == CertificateStatus.APPROVED and payload.admin_id:
        updates["approved_by"] = payload.admin_id
    updates["status_history"] = item.status_history + [
        StatusHistoryEntry(status=payload.status.value, at=now, by=payload.admin_id, note=payload.note)
    ]
    saved = await _store(remote, local, item.model_copy(update=updates))
    logger.info("Certificate %s: %s -> %s", saved.id, item.status.value, saved.status.value)
    return CertificateResponse(item=saved)


async def delete_certificate(remote: RemoteStore, local: LocalBuffer, certificate_id: str) -> str:
    removed = await local.delete(certificate_id)
    if remote.available:
        removed = bool(await remote.delete_rows(TABLE_CERTIFICATES, ("id",), certificate_id)) or removed
    if not removed:
        raise NotFound("Certificate not found")
    return certificate_id


async def sync_certificates(remote: RemoteStore, local: LocalBuffer) -> Dict[str, int]:
    """Write locally pending certificates through to the remote table."""
    synced = failed = 0
    if not remote.available:
        return {"synced": 0, "failed": 0}
    for pending in await local.list(ENTITY_CERTIFICATE, SYNC_PENDING):
        item = _item_from_row({**(pending.payload or {}), "id": pending.id})
        try:
            await _upsert_remote(remote, item)
        except ServiceError as e:
            await local.mark_failed(pending.id, describe_error(e))
            failed += 1
            continue
        await local.delete(pending.id)
        synced += 1
    return {"synced": synced, "failed": failed}
