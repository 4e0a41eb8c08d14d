"""
Status lifecycles for enquiries, admissions and students.

Enquiry:   Pending -> Enrolled | NotInterested (both terminal). Stage is informational.
Admission: Pending -> Verified | Rejected | Suspended | Cancelled. Verified -> Verified is a no-op.
Student:   Current <-> Freeze; Current -> Suspended | Concluded | Alumni | NotCompleted;
           any state -> Current (administrative reinstatement).

Verified is the only admission transition with a side effect: it builds the Student record.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Tuple

from admitflow.core.enums import (
    AdmissionStatus,
    EnquiryStage,
    EnquiryStatus,
    Provenance,
    StudentStatus,
)
from admitflow.core.exceptions import InvalidTransition, ValidationFailure
from admitflow.core.schemas import (
    AdmissionInfo,
    AdmissionRecord,
    EnquiryRecord,
    FeeInfo,
    StudentRecord,
)
from admitflow.core.student_id import generate_student_id

ENTITY_ENQUIRY = "enquiry"
ENTITY_ADMISSION = "admission"
ENTITY_STUDENT = "student"

UNASSIGNED_BATCH = "UNASSIGNED"

ENQUIRY_TRANSITIONS: Dict[EnquiryStatus, FrozenSet[EnquiryStatus]] = {
    EnquiryStatus.PENDING: frozenset({EnquiryStatus.ENROLLED, EnquiryStatus.NOT_INTERESTED}),
    EnquiryStatus.ENROLLED: frozenset(),
    EnquiryStatus.NOT_INTERESTED: frozenset(),
}

ADMISSION_TRANSITIONS: Dict[AdmissionStatus, FrozenSet[AdmissionStatus]] = {
    AdmissionStatus.PENDING: frozenset(
        {
            AdmissionStatus.VERIFIED,
            AdmissionStatus.REJECTED,
            AdmissionStatus.SUSPENDED,
            AdmissionStatus.CANCELLED,
        }
    ),
    AdmissionStatus.VERIFIED: frozenset(),
    AdmissionStatus.REJECTED: frozenset(),
    AdmissionStatus.SUSPENDED: frozenset(),
    AdmissionStatus.CANCELLED: frozenset(),
}

STUDENT_TRANSITIONS: Dict[StudentStatus, FrozenSet[StudentStatus]] = {
    StudentStatus.CURRENT: frozenset(
        {
            StudentStatus.FREEZE,
            StudentStatus.SUSPENDED,
            StudentStatus.CONCLUDED,
            StudentStatus.ALUMNI,
            StudentStatus.NOT_COMPLETED,
        }
    ),
    StudentStatus.FREEZE: frozenset({StudentStatus.CURRENT}),
    StudentStatus.SUSPENDED: frozenset({StudentStatus.CURRENT}),
    StudentStatus.CONCLUDED: frozenset({StudentStatus.CURRENT}),
    StudentStatus.ALUMNI: frozenset({StudentStatus.CURRENT}),
    StudentStatus.NOT_COMPLETED: frozenset({StudentStatus.CURRENT}),
}

# (entity, status) pairs that may be re-entered without error or side effects.
IDEMPOTENT_STATES = frozenset({(ENTITY_ADMISSION, AdmissionStatus.VERIFIED)})

_TABLES = {
    ENTITY_ENQUIRY: ENQUIRY_TRANSITIONS,
    ENTITY_ADMISSION: ADMISSION_TRANSITIONS,
    ENTITY_STUDENT: STUDENT_TRANSITIONS,
}

STAGE_ORDER: Tuple[EnquiryStage, ...] = (
    EnquiryStage.PROSPECTIVE,
    EnquiryStage.NEED_ANALYSIS,
    EnquiryStage.PROPOSAL,
    EnquiryStage.NEGOTIATION,
)


def check_transition(entity: str, current, target) -> bool:
    """
    Validate a status change against the entity's table.
    Returns True when the status actually changes, False for an idempotent re-entry.
    Raises InvalidTransition otherwise.
    """
    table = _TABLES[entity]
    if current == target and (entity, target) in IDEMPOTENT_STATES:
        return False
    if target not in table.get(current, frozenset()):
        raise InvalidTransition(entity, _label(current), _label(target))
    return True


def can_transition(entity: str, current, target) -> bool:
    try:
        check_transition(entity, current, target)
    except InvalidTransition:
        return False
    return True


def next_stage(stage: EnquiryStage) -> EnquiryStage:
    idx = STAGE_ORDER.index(stage)
    return STAGE_ORDER[(idx + 1) % len(STAGE_ORDER)]


def _label(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ----- Admission -----

@dataclass
class Promotion:
    admission: AdmissionRecord
    student: Optional[StudentRecord]

    @property
    def created(self) -> bool:
        return self.student is not None


def promote_admission(
    admission: AdmissionRecord,
    batch: Optional[str] = None,
    campus: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Promotion:
    """
    Admission -> Verified. Generates a student id when none exists and builds the StudentRecord.
    Re-approving an already-Verified admission that already has a student returns no new student.
    """
    now = now or _now()
    changed = check_transition(ENTITY_ADMISSION, admission.status, AdmissionStatus.VERIFIED)
    if not changed and admission.student_id:
        return Promotion(admission=admission, student=None)

    student_id = admission.student_id or generate_student_id(admission.student.name, now)
    updates = {"status": AdmissionStatus.VERIFIED, "student_id": student_id, "updated_at": now}
    if batch:
        updates["batch"] = batch
    if campus:
        updates["campus"] = campus
    verified = admission.model_copy(update=updates)
    student = StudentRecord(
        id=student_id,
        created_at=now,
        updated_at=now,
        source=Provenance.STUDENTS,
        name=verified.student.name,
        email=verified.student.email,
        phone=verified.student.phone,
        status=StudentStatus.CURRENT,
        admission=AdmissionInfo(
            course=verified.course,
            batch=verified.batch,
            campus=verified.campus,
            date=verified.created_at,
        ),
        fee=verified.fee.model_copy(deep=True),
        enrolled_courses=[verified.course] if verified.course else [],
        admission_id=verified.id,
    )
    return Promotion(admission=verified, student=student)


def change_admission_status(
    admission: AdmissionRecord,
    target: AdmissionStatus,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AdmissionRecord:
    """Non-promoting transitions (Rejected, Suspended, Cancelled)."""
    if target == AdmissionStatus.VERIFIED:
        raise ValidationFailure("Use promotion to verify an admission")
    check_transition(ENTITY_ADMISSION, admission.status, target)
    updates = {"status": target, "updated_at": now or _now()}
    if target == AdmissionStatus.REJECTED:
        if not reason or not reason.strip():
            raise ValidationFailure("Reason for rejection is required")
        updates["rejected_reason"] = reason.strip()
    return admission.model_copy(update=updates)


# ----- Enquiry -----

@dataclass
class Conversion:
    enquiry: EnquiryRecord
    student: Optional[StudentRecord]


def convert_enquiry(
    enquiry: EnquiryRecord,
    fee: Optional[FeeInfo] = None,
    now: Optional[datetime] = None,
) -> Conversion:
    """Pending -> Enrolled, creating the linked Student. Converting twice creates nothing new."""
    now = now or _now()
    if enquiry.status == EnquiryStatus.ENROLLED and enquiry.student_id:
        return Conversion(enquiry=enquiry, student=None)
    check_transition(ENTITY_ENQUIRY, enquiry.status, EnquiryStatus.ENROLLED)
    student_id = enquiry.student_id or generate_student_id(enquiry.name, now)
    converted = enquiry.model_copy(
        update={"status": EnquiryStatus.ENROLLED, "student_id": student_id, "updated_at": now}
    )
    student = StudentRecord(
        id=student_id,
        created_at=now,
        updated_at=now,
        source=Provenance.STUDENTS,
        name=enquiry.name,
        email=enquiry.email or "",
        phone=enquiry.contact,
        status=StudentStatus.CURRENT,
        admission=AdmissionInfo(
            course=enquiry.course,
            batch=UNASSIGNED_BATCH,
            campus=enquiry.campus or "",
            date=now,
        ),
        fee=fee or FeeInfo(),
        enrolled_courses=[enquiry.course] if enquiry.course else [],
        enquiry_id=enquiry.id,
    )
    return Conversion(enquiry=converted, student=student)


def mark_enquiry_not_interested(enquiry: EnquiryRecord, now: Optional[datetime] = None) -> EnquiryRecord:
    check_transition(ENTITY_ENQUIRY, enquiry.status, EnquiryStatus.NOT_INTERESTED)
    return enquiry.model_copy(update={"status": EnquiryStatus.NOT_INTERESTED, "updated_at": now or _now()})


# ----- Student -----

def change_student_status(
    student: StudentRecord,
    target: StudentStatus,
    now: Optional[datetime] = None,
) -> StudentRecord:
    check_transition(ENTITY_STUDENT, student.status, target)
    return student.model_copy(update={"status": target, "updated_at": now or _now()})
