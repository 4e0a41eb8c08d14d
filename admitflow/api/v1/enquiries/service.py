"""
Enquiries: capture, follow-up, stage cycling and conversion to a Student.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from admitflow.core.enums import ChangeEvent, EnquiryStage, EnquiryStatus
from admitflow.core.exceptions import ServiceError, ValidationFailure, describe_error
from admitflow.core.lifecycle import (
    ENTITY_ENQUIRY,
    convert_enquiry,
    mark_enquiry_not_interested,
    next_stage,
)
from admitflow.core.schemas import EnquiryRecord, FeeInfo
from admitflow.db.writer import RecordWriter
from admitflow.sync.reconciliation import TABLE_ENQUIRIES, TABLE_STUDENTS, ReconciliationService

from admitflow.api.v1.admissions import audit_service

from .schemas import (
    EnquiryConvert,
    EnquiryConvertResponse,
    EnquiryCreate,
    EnquiryFollowUp,
    EnquiryImportError,
    EnquiryImportResult,
    EnquiryListResponse,
    EnquiryStageUpdate,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "Website"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _create_row(payload: EnquiryCreate) -> dict:
    now = datetime.now(timezone.utc)
    sources = [s.strip() for s in payload.sources if s and s.strip()] or [DEFAULT_SOURCE]
    return {
        "name": payload.name.strip(),
        "course": payload.course.strip(),
        "contact": payload.contact.strip(),
        "email": _clean(payload.email),
        "city": _clean(payload.city),
        "campus": _clean(payload.campus),
        "sources": sources,
        "stage": EnquiryStage.PROSPECTIVE.value,
        "status": EnquiryStatus.PENDING.value,
        "next_follow": payload.next_follow_up,
        "probability": payload.probability,
        "remarks": _clean(payload.remarks),
        "created_at": now,
        "updated_at": now,
    }


# ----- Create -----

async def create_enquiry(recon: ReconciliationService, writer: RecordWriter, payload: EnquiryCreate) -> EnquiryRecord:
    """Stored remotely when possible, otherwise buffered locally with pending_sync set."""
    record = await writer.create_enquiry(_create_row(payload))
    await audit_service.log_audit(writer.remote, ENTITY_ENQUIRY, record.id, "CREATE", to_status=record.status.value)
    recon.publish(TABLE_ENQUIRIES, ChangeEvent.INSERT, record)
    return record


async def import_enquiries(
    recon: ReconciliationService,
    writer: RecordWriter,
    rows: List[dict],
    skipped: List[tuple],
) -> EnquiryImportResult:
    """Insert parsed spreadsheet rows one by one; a failing row is reported, not fatal."""
    items: List[EnquiryRecord] = []
    errors = [EnquiryImportError(row=row_num, reason=reason) for row_num, reason in skipped]
    for offset, row in enumerate(rows):
        now = datetime.now(timezone.utc)
        try:
            record = await writer.create_enquiry({**row, "probability": 50, "created_at": now, "updated_at": now})
        except ServiceError as e:
            logger.warning("Enquiry import row %s failed: %s", row.get("name"), describe_error(e))
            errors.append(EnquiryImportError(row=offset + 2, reason=describe_error(e)))
            continue
        recon.publish(TABLE_ENQUIRIES, ChangeEvent.INSERT, record)
        items.append(record)
    logger.info("Imported %s enquiries, %s skipped", len(items), len(errors))
    return EnquiryImportResult(imported=len(items), skipped=len(errors), errors=errors, items=items)


# ----- Reads -----

async def list_enquiries(
    recon: ReconciliationService,
    status_filter: Optional[str] = None,
    stage: Optional[str] = None,
    course: Optional[str] = None,
    search: Optional[str] = None,
) -> EnquiryListResponse:
    items = await recon.fetch_enquiries()
    if status_filter:
        items = [e for e in items if e.status.value.lower() == status_filter.lower()]
    if stage:
        items = [e for e in items if e.stage.value.lower() == stage.lower()]
    if course:
        items = [e for e in items if e.course == course]
    if search:
        q = search.strip().lower()
        items = [
            e
            for e in items
            if q in e.name.lower() or q in e.contact.lower() or q in (e.email or "").lower() or q in e.id.lower()
        ]
    return EnquiryListResponse(items=items, total=len(items))


async def get_enquiry(recon: ReconciliationService, enquiry_id: str) -> EnquiryRecord:
    return await recon.get_enquiry(enquiry_id)


# ----- Updates -----

async def _store(recon: ReconciliationService, writer: RecordWriter, record: EnquiryRecord, fields) -> EnquiryRecord:
    saved = await writer.save_enquiry(record, fields)
    recon.publish(TABLE_ENQUIRIES, ChangeEvent.UPDATE, saved)
    return saved


async def record_follow_up(
    recon: ReconciliationService,
    writer: RecordWriter,
    enquiry_id: str,
    payload: EnquiryFollowUp,
) -> EnquiryRecord:
    """Set the next follow-up date and append a remark line."""
    enquiry = await recon.get_enquiry(enquiry_id)
    if enquiry.status != EnquiryStatus.PENDING:
        raise ValidationFailure(f"Enquiry is {enquiry.status.value}; follow-ups are only for pending enquiries")
    updates = {}
    fields = []
    if payload.next_follow_up is not None:
        updates["next_follow_up"] = payload.next_follow_up
        fields.append("next_follow")
    remark = _clean(payload.remarks)
    if remark:
        updates["remarks"] = f"{enquiry.remarks}\n{remark}" if enquiry.remarks else remark
        fields.append("remarks")
    if payload.probability is not None:
        updates["probability"] = payload.probability
        fields.append("probability")
    if not updates:
        raise ValidationFailure("Nothing to update")
    return await _store(recon, writer, enquiry.model_copy(update=updates), fields)


async def set_stage(
    recon: ReconciliationService,
    writer: RecordWriter,
    enquiry_id: str,
    payload: EnquiryStageUpdate,
) -> EnquiryRecord:
    enquiry = await recon.get_enquiry(enquiry_id)
    stage = payload.stage or next_stage(enquiry.stage)
    if stage == enquiry.stage:
        return enquiry
    return await _store(recon, writer, enquiry.model_copy(update={"stage": stage}), ("stage",))


async def convert(
    recon: ReconciliationService,
    writer: RecordWriter,
    enquiry_id: str,
    payload: EnquiryConvert,
) -> EnquiryConvertResponse:
    """Pending -> Enrolled with a new Student (batch UNASSIGNED). Converting again creates nothing."""
    enquiry = await recon.get_enquiry(enquiry_id)
    if not enquiry.student_id:
        linked = next((s for s in await recon.fetch_students() if s.enquiry_id == enquiry.id), None)
        if linked is not None:
            enquiry = enquiry.model_copy(update={"student_id": linked.id})
    from_status = enquiry.status.value
    fee = FeeInfo(total=payload.fee_total, discount_percent=payload.discount_percent)
    conversion = convert_enquiry(enquiry, fee=fee)
    if conversion.student is None:
        return EnquiryConvertResponse(enquiry=enquiry, student_id=enquiry.student_id, student_created=False)

    student = await writer.save_student(conversion.student)
    recon.publish(TABLE_STUDENTS, ChangeEvent.INSERT, student)
    saved = await writer.save_enquiry(conversion.enquiry, ("status", "student_id"))
    await audit_service.log_audit(
        writer.remote,
        ENTITY_ENQUIRY,
        saved.id,
        "CONVERT",
        from_status=from_status,
        to_status=saved.status.value,
        remarks=f"Student {student.id}",
    )
    recon.publish(TABLE_ENQUIRIES, ChangeEvent.UPDATE, saved)
    return EnquiryConvertResponse(enquiry=saved, student_id=student.id, student_created=True)


async def not_interested(recon: ReconciliationService, writer: RecordWriter, enquiry_id: str) -> EnquiryRecord:
    enquiry = await recon.get_enquiry(enquiry_id)
    updated = mark_enquiry_not_interested(enquiry)
    saved = await _store(recon, writer, updated, ("status",))
    await audit_service.log_audit(
        writer.remote,
        ENTITY_ENQUIRY,
        saved.id,
        "NOT_INTERESTED",
        from_status=enquiry.status.value,
        to_status=saved.status.value,
    )
    return saved


async def delete_enquiry(recon: ReconciliationService, writer: RecordWriter, enquiry_id: str) -> None:
    enquiry = await recon.get_enquiry(enquiry_id)
    await writer.delete_enquiry(enquiry)
    await audit_service.log_audit(writer.remote, ENTITY_ENQUIRY, enquiry.id, "DELETE", from_status=enquiry.status.value)
    recon.publish(TABLE_ENQUIRIES, ChangeEvent.DELETE, record_id=enquiry.id)
