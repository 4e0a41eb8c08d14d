"""
Public application form. Submissions go through the ingest gateway restricted to the
public_applications table, so an unreachable store still buffers them locally.
"""

from admitflow.api.v1.admissions.ingest import PUBLIC_FORM_STRATEGIES, IngestGateway
from admitflow.api.v1.admissions.schemas import AdmissionSubmission
from admitflow.core.schemas import AdmissionRecord
from admitflow.db.remote import RemoteStore
from admitflow.sync.normalize import from_public_applications

from .schemas import (
    PublicApplicationCreate,
    PublicApplicationItem,
    PublicApplicationListResponse,
    PublicApplicationResponse,
)

PREFERRED_START_PREFIX = "Preferred start: "


def _item_from_record(record: AdmissionRecord, preferred_start=None) -> PublicApplicationItem:
    if preferred_start is None and record.notes and record.notes.startswith(PREFERRED_START_PREFIX):
        preferred_start = record.notes[len(PREFERRED_START_PREFIX):]
    return PublicApplicationItem(
        id=record.id,
        created_at=record.created_at,
        name=record.student.name,
        email=record.student.email,
        phone=record.student.phone,
        course=record.course,
        preferred_start=str(preferred_start) if preferred_start else None,
        status=record.status.value,
        pending_sync=record.pending_sync,
    )


async def submit_application(gateway: IngestGateway, payload: PublicApplicationCreate) -> PublicApplicationResponse:
    submission = AdmissionSubmission(
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        course=payload.course,
        start_date=payload.preferred_start,
    )
    result = await gateway.submit(submission, strategies=PUBLIC_FORM_STRATEGIES)
    return PublicApplicationResponse(item=_item_from_record(result.record, payload.preferred_start))


async def list_applications(remote: RemoteStore) -> PublicApplicationListResponse:
    """Rows of public_applications, newest first. Empty when no relational store is configured."""
    if not remote.available:
        return PublicApplicationListResponse(items=[])
    rows = await remote.fetch_rows("public_applications")
    records = sorted((from_public_applications(r) for r in rows), key=lambda r: r.created_at, reverse=True)
    items = [_item_from_record(r) for r in records]
    return PublicApplicationListResponse(items=items)
