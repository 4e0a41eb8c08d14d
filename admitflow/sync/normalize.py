"""
Source adapters: map each raw row shape onto the canonical record types.

Every source stores the same logical record differently (snake_case columns, camelCase REST
items, JSON documents, locally buffered payloads). Each adapter is keyed by its Provenance and
produces a canonical record tagged with that provenance, so precedence can be decided later
without guessing where a row came from.
"""

import json
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Type

from admitflow.core.config import settings
from admitflow.core.enums import (
    STATUS_ALIASES,
    AdmissionStatus,
    EnquiryStage,
    EnquiryStatus,
    Provenance,
    StudentStatus,
)
from admitflow.core.models.pending_record import OVERLAY_KEY, SYNC_PENDING
from admitflow.core.schemas import (
    AdmissionInfo,
    AdmissionRecord,
    ContactInfo,
    Document,
    EnquiryRecord,
    FeeInfo,
    Installment,
    StudentRecord,
)

logger = logging.getLogger(__name__)

ADMISSION_ID_FIELDS = ("app_id", "id", "appId", "appID", "uuid")
PUBLIC_ID_FIELDS = ("id", "app_id", "appId")
ENQUIRY_ID_FIELDS = ("id", "enquiry_id", "enquiryId")

DEFAULT_CITY = "Lahore"


# ----- Field helpers -----

def first_present(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_json(value: Any) -> Any:
    """JSON columns come back as text from some drivers when selected raw."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        text = value.strip()
        if text[:1] in ("[", "{"):
            try:
                return json.loads(text)
            except ValueError:
                return value
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO strings, dates and epoch numbers into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            logger.debug("Unparseable timestamp %r", value)
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def coerce_enum(enum_cls: Type, value: Any, default):
    """Map a stored status string onto enum_cls, accepting legacy spellings and any casing."""
    if value is None or value == "":
        return default
    if isinstance(value, enum_cls):
        return value
    text = STATUS_ALIASES.get(str(value).strip(), str(value).strip())
    for member in enum_cls:
        if member.value.lower() == text.lower():
            return member
    logger.debug("Unknown %s value %r, using %s", enum_cls.__name__, value, default.value)
    return default


def canonical_id(
    row: Mapping[str, Any],
    fields: Iterable[str],
    created: Any = None,
) -> str:
    """First non-empty identifier field, then the creation timestamp, then a random token."""
    raw = first_present(row, *fields)
    if raw is not None:
        return str(raw)
    if created:
        return str(created)
    return uuid.uuid4().hex


def _text(value: Any, default: str = "") -> str:
    return default if value is None else str(value)


def normalize_installments(
    raw: Any,
    created_at: datetime,
    fee_total: Decimal = Decimal("0"),
    next_due: Any = None,
    synthesize: bool = False,
) -> List[Installment]:
    """
    Accept due_date|dueDate and paid_at|paidAt; ids default to I<n>.
    With `synthesize`, a positive fee and no installments yields a single "due" installment.
    """
    raw = parse_json(raw)
    items: List[Installment] = []
    if isinstance(raw, list):
        for index, inst in enumerate(raw):
            if not isinstance(inst, Mapping):
                continue
            items.append(
                Installment(
                    id=_text(inst.get("id"), f"I{index + 1}") or f"I{index + 1}",
                    amount=max(Decimal("0"), to_decimal(inst.get("amount"))),
                    due_date=parse_datetime(first_present(inst, "due_date", "dueDate")) or created_at,
                    paid_at=parse_datetime(first_present(inst, "paid_at", "paidAt")),
                )
            )
    if not items and synthesize and fee_total > 0:
        due = parse_datetime(next_due) or created_at + timedelta(days=settings.default_due_days)
        items.append(Installment(id="due", amount=fee_total, due_date=due))
    return items


def normalize_documents(raw: Any) -> List[Document]:
    raw = parse_json(raw)
    if not isinstance(raw, list):
        return []
    docs = []
    for index, doc in enumerate(raw):
        if not isinstance(doc, Mapping):
            continue
        docs.append(
            Document(
                name=_text(doc.get("name"), f"Document {index + 1}"),
                url=_text(doc.get("url"), "#"),
                verified=bool(doc.get("verified")),
            )
        )
    return docs


def _string_list(raw: Any) -> List[str]:
    raw = parse_json(raw)
    if isinstance(raw, str):
        return [s.strip() for s in raw.split(",") if s.strip()]
    if isinstance(raw, list):
        return [str(s) for s in raw if s is not None and str(s).strip()]
    return []


def _created(row: Mapping[str, Any]) -> datetime:
    return parse_datetime(first_present(row, "created_at", "createdAt")) or datetime.now(timezone.utc)


# ----- Admissions -----

def admission_from_row(row: Mapping[str, Any], source: Provenance, pending_sync: bool = False) -> AdmissionRecord:
    created_raw = first_present(row, "created_at", "createdAt")
    created = _created(row)
    fee_total = to_decimal(first_present(row, "fee_total", "feeTotal"))
    discount = to_decimal(first_present(row, "fee_discount_percent", "discount_percent"))
    return AdmissionRecord(
        id=canonical_id(row, ADMISSION_ID_FIELDS, created_raw),
        created_at=created,
        updated_at=parse_datetime(first_present(row, "updated_at", "updatedAt")) or created,
        source=source,
        pending_sync=pending_sync,
        status=coerce_enum(AdmissionStatus, row.get("status"), AdmissionStatus.PENDING),
        student=ContactInfo(
            name=_text(row.get("name")),
            email=_text(row.get("email")),
            phone=_text(row.get("phone")),
        ),
        course=_text(row.get("course")),
        batch=_text(row.get("batch"), settings.default_batch) or settings.default_batch,
        campus=_text(row.get("campus"), settings.default_campus) or settings.default_campus,
        fee=FeeInfo(
            total=max(Decimal("0"), fee_total),
            discount_percent=min(Decimal("100"), max(Decimal("0"), discount)),
            installments=normalize_installments(
                first_present(row, "fee_installments", "installments"),
                created,
                fee_total=fee_total,
                next_due=first_present(row, "next_due_date", "start_date"),
                synthesize=True,
            ),
        ),
        documents=normalize_documents(row.get("documents")),
        notes=first_present(row, "notes", "message"),
        student_id=first_present(row, "student_id", "studentId"),
        rejected_reason=first_present(row, "rejected_reason", "rejectedReason"),
    )


def from_applications(row: Mapping[str, Any]) -> AdmissionRecord:
    return admission_from_row(row, Provenance.APPLICATIONS)


def from_admissions(row: Mapping[str, Any]) -> AdmissionRecord:
    return admission_from_row(row, Provenance.ADMISSIONS)


def _public_record(row: Mapping[str, Any], source: Provenance, preferred: Any) -> AdmissionRecord:
    created_raw = first_present(row, "created_at", "createdAt")
    created = _created(row)
    return AdmissionRecord(
        id=canonical_id(row, PUBLIC_ID_FIELDS, created_raw),
        created_at=created,
        updated_at=parse_datetime(first_present(row, "updated_at", "updatedAt")) or created,
        source=source,
        status=coerce_enum(AdmissionStatus, row.get("status"), AdmissionStatus.PENDING),
        student=ContactInfo(
            name=_text(row.get("name")),
            email=_text(row.get("email")),
            phone=_text(row.get("phone")),
        ),
        course=_text(row.get("course")),
        batch=settings.default_batch,
        campus=_text(row.get("campus"), settings.default_campus) or settings.default_campus,
        notes=f"Preferred start: {preferred}" if preferred else None,
    )


def from_public_applications(row: Mapping[str, Any]) -> AdmissionRecord:
    return _public_record(row, Provenance.PUBLIC_APPLICATIONS, row.get("preferred_start"))


def from_public_api(item: Mapping[str, Any]) -> AdmissionRecord:
    return _public_record(item, Provenance.PUBLIC_API, first_present(item, "preferredStart", "preferred_start"))


def local_payload(pending) -> Dict[str, Any]:
    """
    Buffered payload with its canonical id resolved.

    An edit of a remote row (overlay) always carries that row's id. A new record keeps its
    local id while pending; once synced it takes the remote id so it collapses onto the
    remote row it became.
    """
    payload = dict(parse_json(pending.payload) or {})
    overlay = payload.pop(OVERLAY_KEY, None)
    payload.pop("app_id", None)
    if overlay:
        payload["id"] = str(overlay.get("record_id"))
    elif pending.sync_state != SYNC_PENDING and pending.remote_id:
        payload["id"] = pending.remote_id
    else:
        payload["id"] = pending.id
    payload.setdefault("created_at", pending.created_at)
    payload["updated_at"] = pending.updated_at
    return payload


def from_local_admission(pending) -> AdmissionRecord:
    return admission_from_row(local_payload(pending), Provenance.LOCAL_BUFFER, pending_sync=pending.sync_state == SYNC_PENDING)


# ----- Enquiries -----

def enquiry_from_row(row: Mapping[str, Any], source: Provenance, pending_sync: bool = False) -> EnquiryRecord:
    created_raw = first_present(row, "created_at", "createdAt")
    created = _created(row)
    probability = first_present(row, "probability")
    try:
        probability = min(100, max(0, int(probability))) if probability is not None else 0
    except (TypeError, ValueError):
        probability = 0
    return EnquiryRecord(
        id=canonical_id(row, ENQUIRY_ID_FIELDS, created_raw),
        created_at=created,
        updated_at=parse_datetime(first_present(row, "updated_at", "updatedAt")) or created,
        source=source,
        pending_sync=pending_sync,
        name=_text(row.get("name")),
        course=_text(row.get("course")),
        contact=_text(first_present(row, "contact", "phone")),
        email=first_present(row, "email"),
        city=_text(row.get("city"), DEFAULT_CITY) or DEFAULT_CITY,
        campus=first_present(row, "campus"),
        sources=_string_list(row.get("sources")),
        stage=coerce_enum(EnquiryStage, row.get("stage"), EnquiryStage.PROSPECTIVE),
        status=coerce_enum(EnquiryStatus, row.get("status"), EnquiryStatus.PENDING),
        next_follow_up=parse_datetime(first_present(row, "next_follow", "next_follow_up", "nextFollow")),
        probability=probability,
        remarks=first_present(row, "remarks"),
        student_id=first_present(row, "student_id", "studentId"),
    )


def from_enquiries(row: Mapping[str, Any]) -> EnquiryRecord:
    return enquiry_from_row(row, Provenance.ENQUIRIES)


def from_local_enquiry(pending) -> EnquiryRecord:
    return enquiry_from_row(local_payload(pending), Provenance.LOCAL_BUFFER, pending_sync=pending.sync_state == SYNC_PENDING)


# ----- Students -----

def student_from_document(
    student_id: str,
    doc: Mapping[str, Any],
    source: Provenance,
    updated: Any = None,
    pending_sync: bool = False,
) -> StudentRecord:
    doc = dict(doc)
    created = _created(doc)
    admission = parse_json(doc.get("admission")) or {}
    fee = parse_json(doc.get("fee")) or {}
    attendance = parse_json(doc.get("attendance")) or []
    return StudentRecord(
        id=student_id,
        created_at=created,
        updated_at=parse_datetime(first_present(doc, "updated_at", "updatedAt")) or parse_datetime(updated) or created,
        source=source,
        pending_sync=pending_sync,
        name=_text(doc.get("name")),
        email=_text(doc.get("email")),
        phone=_text(doc.get("phone")),
        status=coerce_enum(StudentStatus, doc.get("status"), StudentStatus.CURRENT),
        admission=AdmissionInfo(
            course=_text(admission.get("course")),
            batch=_text(admission.get("batch")),
            campus=_text(admission.get("campus")),
            date=parse_datetime(admission.get("date")) or created,
        ),
        fee=FeeInfo(
            total=max(Decimal("0"), to_decimal(fee.get("total"))),
            discount_percent=min(Decimal("100"), max(Decimal("0"), to_decimal(first_present(fee, "discount_percent", "discountPercent")))),
            installments=normalize_installments(fee.get("installments"), created),
        ),
        attendance=[a for a in attendance if isinstance(a, Mapping) and a.get("date")],
        documents=normalize_documents(doc.get("documents")),
        communications=[c for c in parse_json(doc.get("communications")) or [] if isinstance(c, Mapping)],
        enrolled_courses=_string_list(first_present(doc, "enrolled_courses", "enrolledCourses")),
        admission_id=first_present(doc, "admission_id", "admissionId"),
        enquiry_id=first_present(doc, "enquiry_id", "enquiryId"),
    )


def from_students(row: Mapping[str, Any]) -> StudentRecord:
    """`students` rows are {id, record}: the record column holds the whole document."""
    doc = parse_json(row.get("record")) or {}
    return student_from_document(str(row.get("id")), doc, Provenance.STUDENTS, updated=row.get("updated_at"))


def from_local_student(pending) -> StudentRecord:
    doc = local_payload(pending)
    return student_from_document(
        doc.pop("id"),
        doc,
        Provenance.LOCAL_BUFFER,
        updated=pending.updated_at,
        pending_sync=pending.sync_state == SYNC_PENDING,
    )


ADMISSION_ADAPTERS: Dict[Provenance, Callable[[Any], AdmissionRecord]] = {
    Provenance.APPLICATIONS: from_applications,
    Provenance.ADMISSIONS: from_admissions,
    Provenance.PUBLIC_APPLICATIONS: from_public_applications,
    Provenance.PUBLIC_API: from_public_api,
    Provenance.LOCAL_BUFFER: from_local_admission,
}

ENQUIRY_ADAPTERS: Dict[Provenance, Callable[[Any], EnquiryRecord]] = {
    Provenance.ENQUIRIES: from_enquiries,
    Provenance.LOCAL_BUFFER: from_local_enquiry,
}

STUDENT_ADAPTERS: Dict[Provenance, Callable[[Any], StudentRecord]] = {
    Provenance.STUDENTS: from_students,
    Provenance.LOCAL_BUFFER: from_local_student,
}


def normalize_rows(adapters: Mapping[Provenance, Callable], source: Provenance, rows: Iterable[Any]) -> List[Any]:
    """Run every row through the source's adapter. Rows an adapter cannot read are skipped and logged."""
    adapter = adapters[source]
    out = []
    for row in rows:
        try:
            out.append(adapter(row))
        except (ValueError, TypeError) as e:
            logger.warning("Skipping unreadable %s row: %s", source.value, e)
    return out


def student_document(student: StudentRecord) -> Dict[str, Any]:
    """The JSON document stored in students.record."""
    return student.model_dump(mode="json", exclude={"id", "source", "pending_sync"})
