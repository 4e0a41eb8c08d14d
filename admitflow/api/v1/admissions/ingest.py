"""
IngestGateway: persist a new application against a remote schema that may not have every column.

Strategies run in order and the first success wins:
  full            applications        contact, course, campus, batch, fee, documents, notes, start date
  minimal         applications        name, email, phone, course, start_date, status
  public_minimal  public_applications name, email, phone, course, preferred_start, status
  public_api      REST endpoint       only when PUBLIC_API_BASE_URL is set

Schema rejections fall through to the next strategy. A connectivity failure skips every remaining
strategy on the same target. Validation and unique-constraint errors propagate at once.
When nothing is stored remotely the payload goes to the local buffer, so it is never lost.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from admitflow.core.config import settings
from admitflow.core.enums import AdmissionStatus, Provenance
from admitflow.core.exceptions import (
    IngestRejected,
    NetworkUnavailable,
    SchemaRejection,
    describe_error,
)
from admitflow.core.models.pending_record import OVERLAY_KEY, SYNC_PENDING
from admitflow.core.schemas import AdmissionRecord
from admitflow.db.local_buffer import LocalBuffer
from admitflow.db.public_api import PublicApiClient
from admitflow.db.remote import RemoteStore
from admitflow.sync.normalize import admission_from_row, from_local_admission

from .schemas import AdmissionSubmission

logger = logging.getLogger(__name__)

ENTITY_ADMISSION = "admission"

TARGET_REMOTE = "remote"
TARGET_PUBLIC_API = "public_api"

OUTCOME_STORED = "stored"
OUTCOME_BUFFERED = "buffered"

MINIMAL_FIELDS = ("name", "email", "phone", "course", "start_date", "status")


def voucher_ref(reference: str) -> str:
    """VCH- + last six characters of the reference, zero-padded on the left, upper-cased."""
    return "VCH-" + str(reference)[-6:].rjust(6, "0").upper()


def full_payload(submission: AdmissionSubmission, now: Optional[datetime] = None) -> Dict[str, Any]:
    """The widest row shape. Narrower strategies project from it; the buffer stores it as is."""
    now = now or datetime.now(timezone.utc)
    start = submission.start_date.isoformat() if submission.start_date else now.date().isoformat()
    if submission.start_date:
        due = datetime(
            submission.start_date.year,
            submission.start_date.month,
            submission.start_date.day,
            tzinfo=timezone.utc,
        )
    else:
        due = now + timedelta(days=settings.default_due_days)
    installments = []
    if submission.fee_total > 0:
        installments.append({"id": "due", "amount": submission.fee_total, "dueDate": due.isoformat()})
    return {
        "name": submission.name.strip(),
        "email": (submission.email or "").strip(),
        "phone": (submission.phone or "").strip(),
        "course": submission.course.strip(),
        "campus": (submission.campus or "").strip() or settings.default_campus,
        "batch": (submission.batch or "").strip() or settings.default_batch,
        "status": AdmissionStatus.PENDING.value,
        "fee_total": submission.fee_total,
        "fee_installments": installments,
        "documents": [],
        "notes": (submission.notes or "").strip() or None,
        "start_date": start,
    }


def minimal_payload(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: row.get(k) for k in MINIMAL_FIELDS}


def public_minimal_payload(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": row.get("name"),
        "email": row.get("email"),
        "phone": row.get("phone"),
        "course": row.get("course"),
        "preferred_start": row.get("start_date"),
        "status": row.get("status"),
    }


def public_api_payload(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": row.get("name"),
        "email": row.get("email"),
        "phone": row.get("phone"),
        "course": row.get("course"),
        "preferredStart": row.get("start_date"),
    }


@dataclass
class InsertStrategy:
    name: str
    target: str
    table: Optional[str]
    provenance: Provenance
    build: Callable[[Dict[str, Any]], Dict[str, Any]]


DEFAULT_STRATEGIES: Tuple[InsertStrategy, ...] = (
    InsertStrategy("full", TARGET_REMOTE, "applications", Provenance.APPLICATIONS, dict),
    InsertStrategy("minimal", TARGET_REMOTE, "applications", Provenance.APPLICATIONS, minimal_payload),
    InsertStrategy("public_minimal", TARGET_REMOTE, "public_applications", Provenance.PUBLIC_APPLICATIONS, public_minimal_payload),
)
PUBLIC_API_STRATEGY = InsertStrategy("public_api", TARGET_PUBLIC_API, None, Provenance.PUBLIC_API, public_api_payload)
# Public form submissions land in public_applications only.
PUBLIC_FORM_STRATEGIES: Tuple[InsertStrategy, ...] = (DEFAULT_STRATEGIES[2],)


@dataclass
class CascadeResult:
    strategy: Optional[InsertStrategy] = None
    row: Optional[Dict[str, Any]] = None
    rejections: List[Tuple[str, SchemaRejection]] = field(default_factory=list)
    unreachable: List[Tuple[str, NetworkUnavailable]] = field(default_factory=list)

    @property
    def stored(self) -> bool:
        return self.strategy is not None


@dataclass
class IngestResult:
    outcome: str
    record: AdmissionRecord
    voucher_ref: str
    strategy: Optional[str] = None
    buffered_id: Optional[str] = None

    @property
    def pending_sync(self) -> bool:
        return self.outcome == OUTCOME_BUFFERED


class IngestGateway:
    def __init__(
        self,
        remote: RemoteStore,
        local: LocalBuffer,
        public_api: Optional[PublicApiClient] = None,
        strategies: Optional[List[InsertStrategy]] = None,
        tracking_table: Optional[str] = None,
        on_record: Optional[Callable[..., None]] = None,
    ) -> None:
        self.remote = remote
        self.local = local
        self.public_api = public_api
        if strategies is None:
            strategies = list(DEFAULT_STRATEGIES)
            if public_api is not None and public_api.available:
                strategies.append(PUBLIC_API_STRATEGY)
        self.strategies = strategies
        self.tracking_table = tracking_table or settings.tracking_table
        self.on_record = on_record
        self._tasks: Set[asyncio.Task] = set()

    # ----- Cascade -----

    def _target_available(self, target: str) -> bool:
        if target == TARGET_REMOTE:
            return self.remote.available
        if target == TARGET_PUBLIC_API:
            return self.public_api is not None and self.public_api.available
        return False

    async def _insert(self, strategy: InsertStrategy, payload: Dict[str, Any]) -> Dict[str, Any]:
        if strategy.target == TARGET_PUBLIC_API:
            return await self.public_api.create_application(payload)
        return await self.remote.insert_row(strategy.table, payload)

    async def cascade(self, row: Dict[str, Any], strategies: Optional[List[InsertStrategy]] = None) -> CascadeResult:
        """Try each strategy in order. ValidationFailure and UniqueConstraintConflict propagate."""
        result = CascadeResult()
        dead_targets: Set[str] = set()
        for strategy in strategies or self.strategies:
            if strategy.target in dead_targets or not self._target_available(strategy.target):
                continue
            try:
                stored = await self._insert(strategy, strategy.build(row))
            except SchemaRejection as e:
                logger.debug("Strategy %s rejected by schema: %s", strategy.name, describe_error(e))
                result.rejections.append((strategy.name, e))
                continue
            except NetworkUnavailable as e:
                logger.warning("Strategy %s could not reach %s: %s", strategy.name, strategy.target, e.message)
                result.unreachable.append((strategy.name, e))
                dead_targets.add(strategy.target)
                continue
            result.strategy = strategy
            result.row = stored
            return result
        return result

    # ----- Submission -----

    def _record_from(self, strategy: InsertStrategy, stored: Dict[str, Any], row: Dict[str, Any], now: datetime) -> AdmissionRecord:
        """The stored row wins; fields it does not have are filled from the submitted payload."""
        combined = dict(row)
        combined["created_at"] = now
        combined.update({k: v for k, v in stored.items() if v is not None})
        if stored.get("createdAt"):
            combined["created_at"] = stored["createdAt"]
        return admission_from_row(combined, strategy.provenance)

    async def submit(self, submission: AdmissionSubmission, strategies: Optional[List[InsertStrategy]] = None) -> IngestResult:
        """
        Persist a new application.

        Returns outcome "stored" with the canonical record, or "buffered" when no remote target
        could be reached. Raises IngestRejected (after buffering) when the store answered every
        strategy with a schema rejection; if any strategy hit a connectivity failure the outcome
        is "buffered" instead. `strategies` overrides the gateway's list for this call only;
        a buffered payload is later replayed through the full list.
        """
        now = datetime.now(timezone.utc)
        row = full_payload(submission, now)
        result = await self.cascade(row, strategies)

        if result.stored:
            record = self._record_from(result.strategy, result.row, row, now)
            logger.info("Stored application %s via %s", record.id, result.strategy.name)
            if result.strategy.target == TARGET_REMOTE:
                self._spawn_companion(record)
            self._notify(record)
            return IngestResult(
                outcome=OUTCOME_STORED,
                record=record,
                voucher_ref=voucher_ref(record.id),
                strategy=result.strategy.name,
            )

        pending = await self.local.add(ENTITY_ADMISSION, row)
        record = from_local_admission(pending)
        self._notify(record)

        if result.rejections and not result.unreachable:
            _, last = result.rejections[-1]
            names = ", ".join(name for name, _ in result.rejections)
            logger.warning("All reachable strategies rejected (%s); buffered as %s", names, pending.id)
            raise IngestRejected(describe_error(last), buffered_id=pending.id)

        logger.warning("Remote store unreachable; application buffered as %s", pending.id)
        return IngestResult(
            outcome=OUTCOME_BUFFERED,
            record=record,
            voucher_ref=voucher_ref(pending.id),
            buffered_id=pending.id,
        )

    async def sync_pending(self) -> Dict[str, int]:
        """Replay buffered submissions through the cascade. Synced rows stay in the buffer with their remote id."""
        synced = failed = 0
        for pending in await self.local.list(ENTITY_ADMISSION, SYNC_PENDING):
            row = dict(pending.payload or {})
            if OVERLAY_KEY in row:
                continue
            try:
                result = await self.cascade(row)
            except Exception as e:
                # recorded on the row; the rest of the queue still runs
                logger.warning("Buffered application %s failed to sync: %s", pending.id, e)
                await self.local.mark_failed(pending.id, describe_error(e))
                failed += 1
                continue
            if not result.stored:
                reason = result.rejections[-1][1] if result.rejections else (result.unreachable[-1][1] if result.unreachable else None)
                await self.local.mark_failed(pending.id, describe_error(reason) if reason else "No remote target available")
                failed += 1
                continue
            record = self._record_from(result.strategy, result.row, row, pending.created_at)
            await self.local.mark_synced(pending.id, record.id)
            if result.strategy.target == TARGET_REMOTE:
                self._spawn_companion(record)
            self._notify(record, replaced_id=pending.id)
            synced += 1
        remaining = len(await self.local.list(ENTITY_ADMISSION, SYNC_PENDING))
        return {"synced": synced, "failed": failed, "remaining": remaining}

    def _notify(self, record: AdmissionRecord, replaced_id: Optional[str] = None) -> None:
        if self.on_record is None:
            return
        try:
            if replaced_id is not None:
                self.on_record(record.model_copy(update={"id": replaced_id}), deleted=True)
            self.on_record(record)
        except Exception:
            logger.exception("Change notification for %s failed", record.id)

    # ----- Companion tracking row -----

    def _spawn_companion(self, record: AdmissionRecord) -> None:
        task = asyncio.create_task(self._write_companion(record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write_companion(self, record: AdmissionRecord) -> None:
        try:
            await self.remote.insert_row(
                self.tracking_table,
                {
                    "reference": record.id,
                    "name": record.student.name,
                    "email": record.student.email,
                    "phone": record.student.phone,
                    "course": record.course,
                    "status": record.status.value,
                },
            )
        except Exception as e:
            logger.warning("Tracking row for %s not written: %s", record.id, describe_error(e))

    async def drain(self) -> None:
        """Wait for outstanding companion writes. Called on shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
