"""
Write path for edits of existing records and for enquiry/student documents.

Remote updates narrow the column set when the schema rejects a column, the same way the
ingest cascade narrows inserts. When the remote row cannot be written (store unreachable,
row missing, read-only source) the edit is kept as an overlay in the local buffer; a pending
overlay outranks the remote copy in the merged view until replay() writes it through.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi.encoders import jsonable_encoder

from admitflow.core.enums import Provenance
from admitflow.core.exceptions import (
    NetworkUnavailable,
    SchemaRejection,
    ServiceError,
    describe_error,
)
from admitflow.core.models.pending_record import OVERLAY_KEY, SYNC_PENDING
from admitflow.core.schemas import AdmissionRecord, EnquiryRecord, StudentRecord
from admitflow.db.local_buffer import LocalBuffer
from admitflow.db.remote import RemoteStore
from admitflow.sync.normalize import (
    enquiry_from_row,
    from_local_enquiry,
    parse_datetime,
    student_document,
)

logger = logging.getLogger(__name__)

ENTITY_ADMISSION = "admission"
ENTITY_ENQUIRY = "enquiry"
ENTITY_STUDENT = "student"

# Provenance -> (table, key columns tried in order)
REMOTE_TABLES: Dict[Provenance, Tuple[str, Tuple[str, ...]]] = {
    Provenance.APPLICATIONS: ("applications", ("app_id", "id")),
    Provenance.ADMISSIONS: ("admissions", ("app_id", "id")),
    Provenance.PUBLIC_APPLICATIONS: ("public_applications", ("id",)),
    Provenance.ENQUIRIES: ("enquiries", ("id",)),
    Provenance.STUDENTS: ("students", ("id",)),
}

# Column subsets tried after the full change set, widest first.
NARROWING: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    ENTITY_ADMISSION: (("status", "student_id", "rejected_reason"), ("status", "student_id"), ("status",)),
    ENTITY_ENQUIRY: (("status", "stage", "student_id", "next_follow", "remarks"), ("status", "stage"), ("status",)),
    ENTITY_STUDENT: (("record",),),
}

ENQUIRY_MINIMAL_FIELDS = ("name", "course", "contact", "email", "status", "stage")
# Buffered payloads hold these as ISO strings; drivers need datetimes back.
DATETIME_FIELDS = ("updated_at", "next_follow")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def admission_row(record: AdmissionRecord) -> Dict[str, Any]:
    """Canonical admission flattened back to the applications column layout."""
    return {
        "name": record.student.name,
        "email": record.student.email,
        "phone": record.student.phone,
        "course": record.course,
        "campus": record.campus,
        "batch": record.batch,
        "status": record.status.value,
        "fee_total": record.fee.total,
        "fee_discount_percent": record.fee.discount_percent,
        "fee_installments": jsonable_encoder([i.model_dump(mode="json") for i in record.fee.installments]),
        "documents": [d.model_dump(mode="json") for d in record.documents],
        "notes": record.notes,
        "student_id": record.student_id,
        "rejected_reason": record.rejected_reason,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def enquiry_row(record: EnquiryRecord) -> Dict[str, Any]:
    return {
        "name": record.name,
        "course": record.course,
        "contact": record.contact,
        "email": record.email,
        "city": record.city,
        "campus": record.campus,
        "sources": list(record.sources),
        "stage": record.stage.value,
        "status": record.status.value,
        "next_follow": record.next_follow_up,
        "probability": record.probability,
        "remarks": record.remarks,
        "student_id": record.student_id,
        "updated_at": record.updated_at,
    }


def _levels(values: Dict[str, Any], subsets: Sequence[Sequence[str]]) -> List[Dict[str, Any]]:
    levels = [values]
    for subset in subsets:
        level = {k: values[k] for k in subset if k in values}
        if level and level not in levels:
            levels.append(level)
    return levels


class RecordWriter:
    def __init__(self, remote: RemoteStore, local: LocalBuffer) -> None:
        self.remote = remote
        self.local = local

    # ----- Remote primitives -----

    async def _update_narrowing(self, table: str, keys: Sequence[str], record_id: str, levels: List[Dict[str, Any]]):
        """First level the schema accepts wins. Returns the updated row, or None when no row matched."""
        last: Optional[SchemaRejection] = None
        for values in levels:
            try:
                return await self.remote.update_rows(table, keys, record_id, values)
            except SchemaRejection as e:
                logger.debug("Update of %s %s rejected (%s), narrowing", table, record_id, describe_error(e))
                last = e
        raise last

    async def _insert_narrowing(self, table: str, levels: List[Dict[str, Any]]) -> Dict[str, Any]:
        last: Optional[SchemaRejection] = None
        for values in levels:
            try:
                return await self.remote.insert_row(table, values)
            except SchemaRejection as e:
                last = e
        raise last

    # ----- Overlays -----

    @staticmethod
    def overlay_key(entity: str, record_id: str) -> str:
        return f"{entity}:{record_id}"

    async def _local_row_id(self, entity: str, record_id: str) -> Optional[str]:
        """Buffer row holding this record: a new record keyed by its own id, or an overlay."""
        for candidate in (record_id, self.overlay_key(entity, record_id)):
            row = await self.local.get(candidate)
            if row is not None and row.entity == entity:
                return candidate
        return None

    async def _keep_locally(
        self,
        entity: str,
        record_id: str,
        payload: Dict[str, Any],
        table: Optional[str],
        keys: Sequence[str],
    ) -> None:
        existing = await self._local_row_id(entity, record_id)
        if existing is not None:
            await self.local.update_payload(existing, payload)
            return
        payload = dict(payload)
        payload[OVERLAY_KEY] = {"table": table, "keys": list(keys), "record_id": record_id}
        await self.local.add(entity, payload, record_id=self.overlay_key(entity, record_id))

    async def _save(
        self,
        entity: str,
        record,
        full_row: Dict[str, Any],
        fields: Sequence[str],
    ):
        """Write `fields` of the record to wherever it lives. Returns the record as it will now be read back."""
        record_id = record.id
        table_keys = REMOTE_TABLES.get(record.source)
        if record.source == Provenance.LOCAL_BUFFER or table_keys is None:
            table, keys = table_keys or (None, ())
            await self._keep_locally(entity, record_id, full_row, table, keys)
            return record.model_copy(update={"source": Provenance.LOCAL_BUFFER, "pending_sync": True})

        table, keys = table_keys
        values = {k: full_row[k] for k in fields if k in full_row}
        if "updated_at" in full_row:
            values["updated_at"] = full_row["updated_at"]
        try:
            row = await self._update_narrowing(table, keys, record_id, _levels(values, NARROWING[entity]))
        except NetworkUnavailable as e:
            logger.warning("%s %s kept locally: %s", entity, record_id, e.message)
            row = None
        if row is None:
            await self._keep_locally(entity, record_id, full_row, table, keys)
            return record.model_copy(update={"source": Provenance.LOCAL_BUFFER, "pending_sync": True})
        stale = await self._local_row_id(entity, record_id)
        if stale is not None:
            await self.local.mark_synced(stale, record_id)
        return record

    # ----- Admissions -----

    async def save_admission(self, record: AdmissionRecord, fields: Sequence[str]) -> AdmissionRecord:
        record = record.model_copy(update={"updated_at": _now()})
        return await self._save(ENTITY_ADMISSION, record, admission_row(record), fields)

    async def delete_admission(self, record: AdmissionRecord) -> None:
        local_id = await self._local_row_id(ENTITY_ADMISSION, record.id)
        if local_id is not None:
            await self.local.delete(local_id)
        table_keys = REMOTE_TABLES.get(record.source)
        if table_keys is not None:
            await self.remote.delete_rows(table_keys[0], table_keys[1], record.id)

    # ----- Enquiries -----

    async def create_enquiry(self, row: Dict[str, Any]) -> EnquiryRecord:
        """Insert into enquiries, narrowing on schema rejection; buffer when that is not possible."""
        row = dict(row)
        if self.remote.available:
            minimal = {k: row[k] for k in ENQUIRY_MINIMAL_FIELDS if k in row}
            try:
                stored = await self._insert_narrowing("enquiries", [row, minimal])
            except (SchemaRejection, NetworkUnavailable) as e:
                logger.warning("Enquiry kept locally: %s", describe_error(e))
            else:
                combined = dict(row)
                combined.update({k: v for k, v in stored.items() if v is not None})
                return enquiry_from_row(combined, Provenance.ENQUIRIES)
        pending = await self.local.add(ENTITY_ENQUIRY, row)
        return from_local_enquiry(pending)

    async def save_enquiry(self, record: EnquiryRecord, fields: Sequence[str]) -> EnquiryRecord:
        record = record.model_copy(update={"updated_at": _now()})
        return await self._save(ENTITY_ENQUIRY, record, enquiry_row(record), fields)

    async def delete_enquiry(self, record: EnquiryRecord) -> None:
        local_id = await self._local_row_id(ENTITY_ENQUIRY, record.id)
        if local_id is not None:
            await self.local.delete(local_id)
        if record.source == Provenance.ENQUIRIES:
            await self.remote.delete_rows("enquiries", ("id",), record.id)

    # ----- Students -----

    async def _upsert_student(self, student_id: str, doc: Dict[str, Any], at: datetime) -> None:
        row = await self._update_narrowing(
            "students", ("id",), student_id, _levels({"record": doc, "updated_at": at}, NARROWING[ENTITY_STUDENT])
        )
        if row is None:
            await self._insert_narrowing(
                "students",
                [{"id": student_id, "record": doc, "updated_at": at}, {"id": student_id, "record": doc}],
            )

    async def save_student(self, student: StudentRecord) -> StudentRecord:
        """Students are upserted whole as {id, record}."""
        now = _now()
        student = student.model_copy(update={"updated_at": now})
        doc = student_document(student)
        if self.remote.available:
            try:
                await self._upsert_student(student.id, doc, now)
                return student.model_copy(update={"source": Provenance.STUDENTS, "pending_sync": False})
            except (SchemaRejection, NetworkUnavailable) as e:
                logger.warning("Student %s kept locally: %s", student.id, describe_error(e))
        await self._keep_locally(ENTITY_STUDENT, student.id, doc, "students", ("id",))
        return student.model_copy(update={"source": Provenance.LOCAL_BUFFER, "pending_sync": True})

    async def delete_student(self, student: StudentRecord) -> None:
        local_id = await self._local_row_id(ENTITY_STUDENT, student.id)
        if local_id is not None:
            await self.local.delete(local_id)
        if self.remote.available:
            await self.remote.delete_rows("students", ("id",), student.id)

    # ----- Replay -----

    async def _replay_one(self, entity: str, pending) -> Optional[str]:
        """Write one buffered row through. Returns the remote id, or None when it must stay local."""
        payload = dict(pending.payload or {})
        overlay = payload.pop(OVERLAY_KEY, None)
        if overlay is None:
            if entity == ENTITY_ENQUIRY:
                minimal = {k: payload[k] for k in ENQUIRY_MINIMAL_FIELDS if k in payload}
                stored = await self._insert_narrowing("enquiries", [payload, minimal])
                return str(stored.get("id")) if stored.get("id") is not None else None
            return None
        table = overlay.get("table")
        record_id = str(overlay.get("record_id"))
        if not table:
            return None
        if entity == ENTITY_STUDENT:
            await self._upsert_student(record_id, payload, _now())
            return record_id
        values = {k: v for k, v in payload.items() if k not in ("id", "created_at")}
        for key in DATETIME_FIELDS:
            if key in values:
                values[key] = parse_datetime(values[key])
        row = await self._update_narrowing(table, overlay.get("keys") or ("id",), record_id, _levels(values, NARROWING[entity]))
        return record_id if row is not None else None

    async def replay(self) -> Dict[str, int]:
        """
        Write pending overlays and buffered enquiries through to the remote store.
        New admission submissions are replayed by the ingest gateway, not here.
        """
        synced = failed = 0
        if not self.remote.available:
            return {"synced": 0, "failed": 0}
        for entity in (ENTITY_ADMISSION, ENTITY_ENQUIRY, ENTITY_STUDENT):
            for pending in await self.local.list(entity, SYNC_PENDING):
                if entity == ENTITY_ADMISSION and OVERLAY_KEY not in (pending.payload or {}):
                    continue
                try:
                    remote_id = await self._replay_one(entity, pending)
                except ServiceError as e:
                    await self.local.mark_failed(pending.id, describe_error(e))
                    failed += 1
                    continue
                if remote_id is None:
                    continue
                await self.local.mark_synced(pending.id, remote_id)
                synced += 1
        return {"synced": synced, "failed": failed}
