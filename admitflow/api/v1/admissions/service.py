"""
Admissions: ingest, merged listing and lifecycle actions.
Approval promotes the admission to a Student; the admission row is kept and updated in place.
"""

from datetime import datetime, timezone
from typing import List, Optional

from admitflow.api.v1.fees import ledger
from admitflow.core.enums import AdmissionStatus, ChangeEvent
from admitflow.core.exceptions import LedgerError, ValidationFailure
from admitflow.core.lifecycle import (
    ENTITY_ADMISSION,
    change_admission_status,
    promote_admission,
)
from admitflow.core.schemas import AdmissionRecord, StudentRecord
from admitflow.db.writer import RecordWriter
from admitflow.sync.reconciliation import TABLE_ADMISSIONS, TABLE_STUDENTS, ReconciliationService

from . import audit_service
from .ingest import IngestGateway
from .schemas import (
    AdmissionApprove,
    AdmissionListResponse,
    AdmissionReject,
    AdmissionResponse,
    AdmissionSubmission,
    AdmissionTransfer,
    IngestResponse,
    PromotionResponse,
    SyncSummary,
)


def _admission_to_response(a: AdmissionRecord, now: Optional[datetime] = None) -> AdmissionResponse:
    return AdmissionResponse(
        **a.model_dump(),
        payment_status=ledger.payment_status(a.fee, now).value,
        discounted_total=ledger.discounted_total(a.fee.total, a.fee.discount_percent),
        total_paid=ledger.total_paid(a.fee),
        pending_amount=ledger.pending_amount(a.fee),
    )


# ----- Ingest -----

async def ingest_admission(gateway: IngestGateway, submission: AdmissionSubmission) -> IngestResponse:
    """Persist a new application. IngestRejected propagates after the payload is buffered."""
    result = await gateway.submit(submission)
    return IngestResponse(
        outcome=result.outcome,
        strategy=result.strategy,
        voucher_ref=result.voucher_ref,
        pending_sync=result.pending_sync,
        record=result.record,
    )


async def sync_admissions(gateway: IngestGateway, writer: RecordWriter) -> SyncSummary:
    submissions = await gateway.sync_pending()
    edits = await writer.replay()
    return SyncSummary(
        synced=submissions["synced"] + edits["synced"],
        failed=submissions["failed"] + edits["failed"],
        remaining=submissions["remaining"],
    )


# ----- Reads -----

async def list_admissions(
    recon: ReconciliationService,
    status_filter: Optional[str] = None,
    course: Optional[str] = None,
    campus: Optional[str] = None,
    search: Optional[str] = None,
) -> AdmissionListResponse:
    """Merged view across every source, newest first."""
    now = datetime.now(timezone.utc)
    items: List[AdmissionRecord] = await recon.fetch_admissions()
    if status_filter:
        items = [a for a in items if a.status.value.lower() == status_filter.lower()]
    if course:
        items = [a for a in items if a.course == course]
    if campus:
        items = [a for a in items if a.campus == campus]
    if search:
        q = search.strip().lower()
        items = [
            a
            for a in items
            if q in a.student.name.lower()
            or q in a.student.email.lower()
            or q in a.student.phone.lower()
            or q in a.id.lower()
        ]
    return AdmissionListResponse(items=[_admission_to_response(a, now) for a in items], total=len(items))


async def get_admission(recon: ReconciliationService, admission_id: str) -> AdmissionResponse:
    return _admission_to_response(await recon.get_admission(admission_id))


# ----- Lifecycle -----

async def _linked_student(recon: ReconciliationService, admission: AdmissionRecord) -> Optional[StudentRecord]:
    """Student already created from this admission, even if the admission row could not store student_id."""
    for s in await recon.fetch_students():
        if s.admission_id == admission.id or (admission.student_id and s.id == admission.student_id):
            return s
    return None


async def approve_admission(
    recon: ReconciliationService,
    writer: RecordWriter,
    admission_id: str,
    payload: AdmissionApprove,
) -> PromotionResponse:
    """
    Pending -> Verified. Creates and persists the Student, then updates the admission in place.
    Approving an already-Verified admission returns it unchanged and creates nothing.
    """
    admission = await recon.get_admission(admission_id)
    linked = await _linked_student(recon, admission)
    if linked is not None and not admission.student_id:
        admission = admission.model_copy(update={"student_id": linked.id})
    from_status = admission.status.value

    promotion = promote_admission(admission, batch=payload.batch, campus=payload.campus)
    now = promotion.admission.updated_at or datetime.now(timezone.utc)
    if not promotion.created:
        return PromotionResponse(
            admission=_admission_to_response(admission),
            student_id=admission.student_id,
            student_created=False,
            approved_at=now,
        )

    student_created = linked is None
    if student_created:
        student = await writer.save_student(promotion.student)
        recon.publish(TABLE_STUDENTS, ChangeEvent.INSERT, student)

    saved = await writer.save_admission(promotion.admission, ("status", "student_id", "batch", "campus"))
    await audit_service.log_audit(
        writer.remote,
        ENTITY_ADMISSION,
        saved.id,
        "APPROVE",
        from_status=from_status,
        to_status=saved.status.value,
        remarks=payload.remarks,
    )
    recon.publish(TABLE_ADMISSIONS, ChangeEvent.UPDATE, saved)
    return PromotionResponse(
        admission=_admission_to_response(saved),
        student_id=saved.student_id,
        student_created=student_created,
        approved_at=now,
    )


async def _change_status(
    recon: ReconciliationService,
    writer: RecordWriter,
    admission_id: str,
    target: AdmissionStatus,
    action: str,
    reason: Optional[str] = None,
) -> AdmissionResponse:
    admission = await recon.get_admission(admission_id)
    updated = change_admission_status(admission, target, reason=reason)
    saved = await writer.save_admission(updated, ("status", "rejected_reason"))
    await audit_service.log_audit(
        writer.remote,
        ENTITY_ADMISSION,
        saved.id,
        action,
        from_status=admission.status.value,
        to_status=saved.status.value,
        remarks=reason,
    )
    recon.publish(TABLE_ADMISSIONS, ChangeEvent.UPDATE, saved)
    return _admission_to_response(saved)


async def reject_admission(recon, writer, admission_id: str, payload: AdmissionReject) -> AdmissionResponse:
    return await _change_status(recon, writer, admission_id, AdmissionStatus.REJECTED, "REJECT", reason=payload.reason)


async def suspend_admission(recon, writer, admission_id: str, remarks: Optional[str] = None) -> AdmissionResponse:
    return await _change_status(recon, writer, admission_id, AdmissionStatus.SUSPENDED, "SUSPEND", reason=remarks)


async def cancel_admission(recon, writer, admission_id: str, remarks: Optional[str] = None) -> AdmissionResponse:
    return await _change_status(recon, writer, admission_id, AdmissionStatus.CANCELLED, "CANCEL", reason=remarks)


async def transfer_admission(
    recon: ReconciliationService,
    writer: RecordWriter,
    admission_id: str,
    payload: AdmissionTransfer,
) -> AdmissionResponse:
    """Move to another batch and/or campus. Status is untouched."""
    if not payload.batch and not payload.campus:
        raise ValidationFailure("Provide a batch or campus to transfer to")
    admission = await recon.get_admission(admission_id)
    updates = {}
    if payload.batch:
        updates["batch"] = payload.batch.strip()
    if payload.campus:
        updates["campus"] = payload.campus.strip()
    saved = await writer.save_admission(admission.model_copy(update=updates), ("batch", "campus"))
    await audit_service.log_audit(
        writer.remote,
        ENTITY_ADMISSION,
        saved.id,
        "TRANSFER",
        remarks=f"{admission.campus}/{admission.batch} -> {saved.campus}/{saved.batch}",
    )
    recon.publish(TABLE_ADMISSIONS, ChangeEvent.UPDATE, saved)
    return _admission_to_response(saved)


async def mark_admission_paid(recon: ReconciliationService, writer: RecordWriter, admission_id: str) -> AdmissionResponse:
    admission = await recon.get_admission(admission_id)
    if not admission.fee.installments:
        raise LedgerError("No installments to mark as paid")
    updated = admission.model_copy(update={"fee": ledger.mark_all_paid(admission.fee)})
    saved = await writer.save_admission(updated, ("fee_installments",))
    await audit_service.log_audit(writer.remote, ENTITY_ADMISSION, saved.id, "MARK_PAID")
    recon.publish(TABLE_ADMISSIONS, ChangeEvent.UPDATE, saved)
    return _admission_to_response(saved)


async def delete_admission(recon: ReconciliationService, writer: RecordWriter, admission_id: str) -> None:
    admission = await recon.get_admission(admission_id)
    await writer.delete_admission(admission)
    await audit_service.log_audit(writer.remote, ENTITY_ADMISSION, admission.id, "DELETE", from_status=admission.status.value)
    recon.publish(TABLE_ADMISSIONS, ChangeEvent.DELETE, record_id=admission.id)
