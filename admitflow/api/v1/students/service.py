"""
Students: merged listing, status lifecycle, attendance and fee ledger actions.
Every change writes the whole student document and publishes an update.
"""

from datetime import datetime, timezone
from typing import List, Optional

from admitflow.api.v1.admissions import audit_service
from admitflow.api.v1.fees import ledger
from admitflow.core.enums import ChangeEvent
from admitflow.core.exceptions import ValidationFailure
from admitflow.core.lifecycle import ENTITY_STUDENT, change_student_status
from admitflow.core.schemas import AttendanceEntry, Communication, StudentRecord
from admitflow.db.writer import RecordWriter
from admitflow.sync.reconciliation import TABLE_STUDENTS, ReconciliationService

from .schemas import (
    AttendanceMark,
    CommunicationCreate,
    CourseEnroll,
    DiscountUpdate,
    FeeCollect,
    InstallmentCreate,
    InstallmentResponse,
    StudentListResponse,
    StudentResponse,
    StudentStatusUpdate,
    StudentTransfer,
)


def _student_to_response(s: StudentRecord, now: Optional[datetime] = None) -> StudentResponse:
    return StudentResponse(
        **s.model_dump(),
        payment_status=ledger.payment_status(s.fee, now).value,
        discounted_total=ledger.discounted_total(s.fee.total, s.fee.discount_percent),
        total_paid=ledger.total_paid(s.fee),
        pending_amount=ledger.pending_amount(s.fee),
    )


async def _store(recon: ReconciliationService, writer: RecordWriter, student: StudentRecord) -> StudentRecord:
    saved = await writer.save_student(student)
    recon.publish(TABLE_STUDENTS, ChangeEvent.UPDATE, saved)
    return saved


# ----- Reads -----

async def list_students(
    recon: ReconciliationService,
    status_filter: Optional[str] = None,
    course: Optional[str] = None,
    batch: Optional[str] = None,
    campus: Optional[str] = None,
    payment: Optional[str] = None,
    search: Optional[str] = None,
) -> StudentListResponse:
    now = datetime.now(timezone.utc)
    items: List[StudentRecord] = await recon.fetch_students()
    if status_filter:
        items = [s for s in items if s.status.value.lower() == status_filter.lower()]
    if course:
        items = [s for s in items if course in s.enrolled_courses or s.admission.course == course]
    if batch:
        items = [s for s in items if s.admission.batch == batch]
    if campus:
        items = [s for s in items if s.admission.campus == campus]
    if search:
        q = search.strip().lower()
        items = [
            s
            for s in items
            if q in s.name.lower() or q in s.email.lower() or q in s.phone.lower() or q in s.id.lower()
        ]
    responses = [_student_to_response(s, now) for s in items]
    if payment:
        responses = [r for r in responses if r.payment_status.lower() == payment.lower()]
    return StudentListResponse(items=responses, total=len(responses))


async def get_student(recon: ReconciliationService, student_id: str) -> StudentResponse:
    return _student_to_response(await recon.get_student(student_id))


# ----- Lifecycle -----

async def change_status(
    recon: ReconciliationService,
    writer: RecordWriter,
    student_id: str,
    payload: StudentStatusUpdate,
) -> StudentResponse:
    student = await recon.get_student(student_id)
    updated = change_student_status(student, payload.status)
    saved = await _store(recon, writer, updated)
    await audit_service.log_audit(
        writer.remote,
        ENTITY_STUDENT,
        saved.id,
        "STATUS_CHANGE",
        from_status=student.status.value,
        to_status=saved.status.value,
        remarks=payload.remarks,
    )
    return _student_to_response(saved)


async def transfer(
    recon: ReconciliationService,
    writer: RecordWriter,
    student_id: str,
    payload: StudentTransfer,
) -> StudentResponse:
    if not payload.batch and not payload.campus:
        raise ValidationFailure("Provide a batch or campus to transfer to")
    student = await recon.get_student(student_id)
    admission = student.admission.model_copy(
        update={k: v.strip() for k, v in (("batch", payload.batch), ("campus", payload.campus)) if v}
    )
    saved = await _store(recon, writer, student.model_copy(update={"admission": admission}))
    await audit_service.log_audit(
        writer.remote,
        ENTITY_STUDENT,
        saved.id,
        "TRANSFER",
        remarks=f"{student.admission.campus}/{student.admission.batch} -> {admission.campus}/{admission.batch}",
    )
    return _student_to_response(saved)


async def enroll_course(
    recon: ReconciliationService,
    writer: RecordWriter,
    student_id: str,
    payload: CourseEnroll,
) -> StudentResponse:
    """Add a course and its fee to the total. Installments are not touched."""
    student = await recon.get_student(student_id)
    course = payload.course.strip()
    if course in student.enrolled_courses:
        raise ValidationFailure(f"Already enrolled in {course}")
    fee = student.fee.model_copy(update={"total": student.fee.total + payload.fee_amount})
    updated = student.model_copy(update={"enrolled_courses": student.enrolled_courses + [course], "fee": fee})
    return _student_to_response(await _store(recon, writer, updated))


async def mark_attendance(
    recon: ReconciliationService,
    writer: RecordWriter,
    student_id: str,
    payload: AttendanceMark,
) -> StudentResponse:
    """One entry per day; marking the same day again replaces it."""
    student = await recon.get_student(student_id)
    day = payload.date.isoformat()
    attendance = [a for a in student.attendance if a.date != day]
    attendance.append(AttendanceEntry(date=day, present=payload.present))
    attendance.sort(key=lambda a: a.date)
    return _student_to_response(await _store(recon, writer, student.model_copy(update={"attendance": attendance})))


async def add_communication(
    recon: ReconciliationService,
    writer: RecordWriter,
    student_id: str,
    payload: CommunicationCreate,
) -> StudentResponse:
    student = await recon.get_student(student_id)
    entry = Communication(channel=payload.channel.strip(), message=payload.message.strip(), at=datetime.now(timezone.utc))
    updated = student.model_copy(update={"communications": student.communications + [entry]})
    return _student_to_response(await _store(recon, writer, updated))


# ----- Fees -----

async def add_installment(
    recon: ReconciliationService,
    writer: RecordWriter,
    student_id: str,
    payload: InstallmentCreate,
) -> InstallmentResponse:
    student = await recon.get_student(student_id)
    result = ledger.add_installment(student.fee, payload.due_date, payload.amount)
    saved = await _store(recon, writer, student.model_copy(update={"fee": result.fee}))
    return InstallmentResponse(
        student=_student_to_response(saved),
        installment=result.installment,
        clamped=result.clamped,
    )


async def set_discount(
    recon: ReconciliationService,
    writer: RecordWriter,
    student_id: str,
    payload: DiscountUpdate,
) -> StudentResponse:
    student = await recon.get_student(student_id)
    fee = ledger.apply_discount(student.fee, payload.discount_percent)
    return _student_to_response(await _store(recon, writer, student.model_copy(update={"fee": fee})))


async def collect_fee(
    recon: ReconciliationService,
    writer: RecordWriter,
    student_id: str,
    payload: FeeCollect,
) -> InstallmentResponse:
    """Mark one installment paid: the given one, or the next unpaid."""
    student = await recon.get_student(student_id)
    if payload.installment_id:
        fee = ledger.mark_installment_paid(student.fee, payload.installment_id)
        installment = next(i for i in fee.installments if i.id == payload.installment_id)
    else:
        result = ledger.collect_next_installment(student.fee)
        fee, installment = result.fee, result.installment
    saved = await _store(recon, writer, student.model_copy(update={"fee": fee}))
    await audit_service.log_audit(
        writer.remote,
        ENTITY_STUDENT,
        saved.id,
        "FEE_COLLECTED",
        remarks=f"{installment.id}: {installment.amount}",
    )
    return InstallmentResponse(student=_student_to_response(saved), installment=installment)


async def delete_student(recon: ReconciliationService, writer: RecordWriter, student_id: str) -> None:
    student = await recon.get_student(student_id)
    await writer.delete_student(student)
    await audit_service.log_audit(writer.remote, ENTITY_STUDENT, student.id, "DELETE", from_status=student.status.value)
    recon.publish(TABLE_STUDENTS, ChangeEvent.DELETE, record_id=student.id)
