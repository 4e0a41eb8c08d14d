"""
Reconciliation service: fetches every source concurrently, normalizes, merges and publishes changes.
One instance per app, created in the lifespan; it owns the ChangeChannel.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from admitflow.core.enums import ChangeEvent, Provenance
from admitflow.core.exceptions import NotFound
from admitflow.core.schemas import AdmissionRecord, EnquiryRecord, StudentRecord
from admitflow.db.local_buffer import LocalBuffer
from admitflow.db.public_api import PublicApiClient
from admitflow.db.remote import RemoteStore
from admitflow.sync.channel import ChangeChannel, ChangeNotification
from admitflow.sync.merger import DEFAULT_POLICY, MergePolicy, merge_records
from admitflow.sync.normalize import (
    ADMISSION_ADAPTERS,
    ENQUIRY_ADAPTERS,
    STUDENT_ADAPTERS,
    normalize_rows,
)
from admitflow.sync.view import LiveView

logger = logging.getLogger(__name__)

TABLE_ADMISSIONS = "admissions"
TABLE_ENQUIRIES = "enquiries"
TABLE_STUDENTS = "students"
LIVE_TABLES = (TABLE_ADMISSIONS, TABLE_ENQUIRIES, TABLE_STUDENTS)

ENTITY_ADMISSION = "admission"
ENTITY_ENQUIRY = "enquiry"
ENTITY_STUDENT = "student"


class ReconciliationService:
    def __init__(
        self,
        remote: RemoteStore,
        local: LocalBuffer,
        public_api: Optional[PublicApiClient] = None,
        channel: Optional[ChangeChannel] = None,
        policy: Optional[MergePolicy] = None,
        poll_interval: float = 5.0,
    ) -> None:
        self.remote = remote
        self.local = local
        self.public_api = public_api
        self.channel = channel or ChangeChannel()
        self.policy = policy or DEFAULT_POLICY
        self.poll_interval = poll_interval
        self._views: List[LiveView] = []

    # ----- Source fetches -----

    async def _remote_rows(self, table_name: str) -> List[Dict[str, Any]]:
        if not self.remote.available:
            return []
        return await self.remote.fetch_rows(table_name)

    async def _public_api_rows(self) -> List[Dict[str, Any]]:
        if self.public_api is None or not self.public_api.available:
            return []
        return await self.public_api.list_applications()

    async def _local_rows(self, entity: str):
        return await self.local.list(entity)

    async def _gather(
        self,
        adapters,
        sources: Sequence[Tuple[Provenance, Callable[[], Awaitable[list]]]],
    ) -> list:
        results = await asyncio.gather(*(fetch() for _, fetch in sources), return_exceptions=True)
        normalized = []
        for (provenance, _), result in zip(sources, results):
            if isinstance(result, Exception):
                logger.warning("Source %s unavailable: %s", provenance.value, result)
                continue
            normalized.append(normalize_rows(adapters, provenance, result))
        return merge_records(normalized, self.policy)

    async def fetch_admissions(self) -> List[AdmissionRecord]:
        return await self._gather(
            ADMISSION_ADAPTERS,
            [
                (Provenance.APPLICATIONS, lambda: self._remote_rows("applications")),
                (Provenance.ADMISSIONS, lambda: self._remote_rows("admissions")),
                (Provenance.PUBLIC_APPLICATIONS, lambda: self._remote_rows("public_applications")),
                (Provenance.PUBLIC_API, self._public_api_rows),
                (Provenance.LOCAL_BUFFER, lambda: self._local_rows(ENTITY_ADMISSION)),
            ],
        )

    async def fetch_enquiries(self) -> List[EnquiryRecord]:
        return await self._gather(
            ENQUIRY_ADAPTERS,
            [
                (Provenance.ENQUIRIES, lambda: self._remote_rows("enquiries")),
                (Provenance.LOCAL_BUFFER, lambda: self._local_rows(ENTITY_ENQUIRY)),
            ],
        )

    async def fetch_students(self) -> List[StudentRecord]:
        return await self._gather(
            STUDENT_ADAPTERS,
            [
                (Provenance.STUDENTS, lambda: self._remote_rows("students")),
                (Provenance.LOCAL_BUFFER, lambda: self._local_rows(ENTITY_STUDENT)),
            ],
        )

    def fetcher(self, table: str) -> Callable[[], Awaitable[list]]:
        return {
            TABLE_ADMISSIONS: self.fetch_admissions,
            TABLE_ENQUIRIES: self.fetch_enquiries,
            TABLE_STUDENTS: self.fetch_students,
        }[table]

    async def _find(self, table: str, record_id: str, label: str):
        for record in await self.fetcher(table)():
            if record.id == str(record_id):
                return record
        raise NotFound(f"{label} not found")

    async def get_admission(self, record_id: str) -> AdmissionRecord:
        return await self._find(TABLE_ADMISSIONS, record_id, "Admission")

    async def get_enquiry(self, record_id: str) -> EnquiryRecord:
        return await self._find(TABLE_ENQUIRIES, record_id, "Enquiry")

    async def get_student(self, record_id: str) -> StudentRecord:
        return await self._find(TABLE_STUDENTS, record_id, "Student")

    # ----- Change propagation -----

    def publish(self, table: str, event: ChangeEvent, record=None, record_id: Optional[str] = None) -> None:
        self.channel.publish(ChangeNotification(table=table, event=event, record=record, record_id=record_id))

    def admission_stored(self, record: AdmissionRecord, deleted: bool = False) -> None:
        """Hook for the ingest gateway: a new or replayed application, or the buffered copy it replaced."""
        if deleted:
            self.publish(TABLE_ADMISSIONS, ChangeEvent.DELETE, record_id=record.id)
        else:
            self.publish(TABLE_ADMISSIONS, ChangeEvent.INSERT, record)

    async def open_view(self, table: str, listener: Optional[Callable[[ChangeNotification], Any]] = None) -> LiveView:
        if table not in LIVE_TABLES:
            raise NotFound(f"Unknown table {table}")
        view = LiveView(table, self.fetcher(table), self.channel, self.poll_interval, listener)
        await view.start()
        self._views.append(view)
        return view

    async def close_view(self, view: LiveView) -> None:
        await view.close()
        if view in self._views:
            self._views.remove(view)

    async def close(self) -> None:
        for view in list(self._views):
            await self.close_view(view)
        self.channel.close()
