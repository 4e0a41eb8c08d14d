from datetime import date

import pytest

from admitflow.api.v1.admissions.ingest import (
    OUTCOME_BUFFERED,
    OUTCOME_STORED,
    PUBLIC_FORM_STRATEGIES,
    IngestGateway,
    full_payload,
    minimal_payload,
    voucher_ref,
)
from admitflow.api.v1.admissions.schemas import AdmissionSubmission
from admitflow.core.enums import AdmissionStatus, Provenance
from admitflow.core.exceptions import IngestRejected, NetworkUnavailable, SchemaRejection, ValidationFailure
from admitflow.core.models.pending_record import SYNC_PENDING, SYNC_SYNCED
from admitflow.db.remote import RemoteStore
from conftest import run_ddl

PUBLIC_APPLICATIONS_DDL = (
    "CREATE TABLE public_applications ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, email TEXT, phone TEXT, course TEXT, "
    "preferred_start TEXT, status TEXT, created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
)


def _submission(**overrides) -> AdmissionSubmission:
    data = dict(
        name="Ayesha Khan",
        email="ayesha@example.com",
        phone="03001234567",
        course="Web Development",
        start_date=date(2026, 3, 1),
        fee_total=30000,
    )
    data.update(overrides)
    return AdmissionSubmission(**data)


class UnreachableStore(RemoteStore):
    """Configured store whose every insert fails with a connectivity error."""

    def __init__(self) -> None:
        super().__init__(None)
        self.attempts = 0

    @property
    def available(self) -> bool:
        return True

    async def insert_row(self, table_name, values):
        self.attempts += 1
        raise NetworkUnavailable("connection refused")


class DroppingStore(RemoteStore):
    """Rejects the full row shape, then loses its connection."""

    def __init__(self) -> None:
        super().__init__(None)
        self.tables = []

    @property
    def available(self) -> bool:
        return True

    async def insert_row(self, table_name, values):
        self.tables.append(table_name)
        if "campus" in values:
            raise SchemaRejection("column campus does not exist")
        raise NetworkUnavailable("connection reset")


def test_voucher_ref() -> None:
    assert voucher_ref("local-1700000000000-ab12cd") == "VCH-AB12CD"
    assert voucher_ref("7") == "VCH-000007"


def test_payload_shapes() -> None:
    row = full_payload(_submission())
    assert row["status"] == AdmissionStatus.PENDING.value
    assert row["start_date"] == "2026-03-01"
    assert row["fee_installments"][0]["id"] == "due"
    assert row["fee_installments"][0]["dueDate"].startswith("2026-03-01")
    assert set(minimal_payload(row)) == {"name", "email", "phone", "course", "start_date", "status"}

    free = full_payload(_submission(fee_total=0, campus="  ", batch=None))
    assert free["fee_installments"] == []
    assert free["campus"] and free["batch"]


async def test_full_strategy_stores(remote_store, local_buffer) -> None:
    seen = []
    gateway = IngestGateway(remote_store, local_buffer, on_record=lambda record, **kw: seen.append(record))
    result = await gateway.submit(_submission())
    await gateway.drain()

    assert result.outcome == OUTCOME_STORED
    assert result.strategy == "full"
    assert result.record.source == Provenance.APPLICATIONS
    assert result.record.fee.total == 30000
    assert result.voucher_ref == voucher_ref(result.record.id)
    assert [r.id for r in seen] == [result.record.id]

    rows = await remote_store.fetch_rows("applications")
    assert len(rows) == 1
    tracking = await remote_store.fetch_rows("application_tracking")
    assert tracking[0]["reference"] == result.record.id


async def test_minimal_strategy_when_columns_missing(bare_remote_engine, local_buffer) -> None:
    await run_ddl(
        bare_remote_engine,
        "CREATE TABLE applications (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, email TEXT, "
        "phone TEXT, course TEXT, start_date TEXT, status TEXT, created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)",
    )
    gateway = IngestGateway(RemoteStore(bare_remote_engine), local_buffer)
    result = await gateway.submit(_submission())
    await gateway.drain()

    assert result.outcome == OUTCOME_STORED
    assert result.strategy == "minimal"
    assert result.record.course == "Web Development"
    # fields the narrow row lacks come from the submitted payload
    assert result.record.fee.total == 30000


async def test_public_minimal_reached_when_primary_rejects(bare_remote_engine, local_buffer) -> None:
    await run_ddl(
        bare_remote_engine,
        "CREATE TABLE applications (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL)",
        PUBLIC_APPLICATIONS_DDL,
    )
    store = RemoteStore(bare_remote_engine)
    gateway = IngestGateway(store, local_buffer)
    result = await gateway.submit(_submission())
    await gateway.drain()

    assert result.outcome == OUTCOME_STORED
    assert result.strategy == "public_minimal"
    assert result.record.source == Provenance.PUBLIC_APPLICATIONS
    rows = await store.fetch_rows("public_applications")
    assert rows[0]["preferred_start"] == "2026-03-01"
    assert await local_buffer.list("admission") == []


async def test_public_form_strategies_skip_applications(remote_store, local_buffer) -> None:
    gateway = IngestGateway(remote_store, local_buffer)
    result = await gateway.submit(_submission(), strategies=PUBLIC_FORM_STRATEGIES)
    await gateway.drain()

    assert result.strategy == "public_minimal"
    assert await remote_store.fetch_rows("applications") == []


async def test_all_rejected_buffers_then_raises(bare_remote_engine, local_buffer) -> None:
    gateway = IngestGateway(RemoteStore(bare_remote_engine), local_buffer)
    with pytest.raises(IngestRejected) as excinfo:
        await gateway.submit(_submission())

    assert excinfo.value.status_code == 422
    assert "no such table" in excinfo.value.message
    pending = await local_buffer.list("admission", SYNC_PENDING)
    assert [p.id for p in pending] == [excinfo.value.buffered_id]
    assert pending[0].payload["name"] == "Ayesha Khan"


async def test_offline_submission_is_buffered(offline_store, local_buffer) -> None:
    gateway = IngestGateway(offline_store, local_buffer)
    result = await gateway.submit(_submission())

    assert result.outcome == OUTCOME_BUFFERED
    assert result.pending_sync is True
    assert result.record.id == result.buffered_id
    assert result.record.id.startswith("local-")
    assert result.voucher_ref == voucher_ref(result.buffered_id)


async def test_unreachable_target_skips_remaining_strategies(local_buffer) -> None:
    store = UnreachableStore()
    gateway = IngestGateway(store, local_buffer)
    result = await gateway.submit(_submission())

    assert store.attempts == 1
    assert result.outcome == OUTCOME_BUFFERED


async def test_store_lost_after_rejection_is_buffered(local_buffer) -> None:
    store = DroppingStore()
    gateway = IngestGateway(store, local_buffer)
    result = await gateway.submit(_submission())

    assert store.tables == ["applications", "applications"]
    assert result.outcome == OUTCOME_BUFFERED
    pending = await local_buffer.list("admission", SYNC_PENDING)
    assert [p.id for p in pending] == [result.buffered_id]


async def test_tracking_failure_does_not_fail_submission(remote_engine, remote_store, local_buffer) -> None:
    await run_ddl(remote_engine, "DROP TABLE application_tracking")
    gateway = IngestGateway(remote_store, local_buffer)
    result = await gateway.submit(_submission())
    await gateway.drain()

    assert result.outcome == OUTCOME_STORED
    assert result.strategy == "full"
    assert len(await remote_store.fetch_rows("applications")) == 1
    assert await local_buffer.list("admission") == []


async def test_validation_failure_propagates(remote_store, local_buffer) -> None:
    gateway = IngestGateway(remote_store, local_buffer)
    row = full_payload(_submission())
    row["name"] = None
    with pytest.raises(ValidationFailure):
        await gateway.cascade(row)
    assert await local_buffer.list("admission") == []


async def test_sync_pending_replays_buffer(offline_store, remote_store, local_buffer) -> None:
    buffered = await IngestGateway(offline_store, local_buffer).submit(_submission())

    notes = []
    gateway = IngestGateway(remote_store, local_buffer, on_record=lambda record, **kw: notes.append((record.id, kw)))
    summary = await gateway.sync_pending()
    await gateway.drain()

    assert summary == {"synced": 1, "failed": 0, "remaining": 0}
    rows = await remote_store.fetch_rows("applications")
    assert len(rows) == 1
    synced = await local_buffer.get(buffered.buffered_id)
    assert synced.sync_state == SYNC_SYNCED
    assert synced.remote_id == str(rows[0]["app_id"] or rows[0]["id"])
    # the local id is withdrawn and the stored id announced
    assert notes[0] == (buffered.buffered_id, {"deleted": True})
    assert notes[1][0] == synced.remote_id


async def test_sync_pending_records_failures(bare_remote_engine, offline_store, local_buffer) -> None:
    await IngestGateway(offline_store, local_buffer).submit(_submission())
    gateway = IngestGateway(RemoteStore(bare_remote_engine), local_buffer)
    summary = await gateway.sync_pending()

    assert summary == {"synced": 0, "failed": 1, "remaining": 1}
    pending = (await local_buffer.list("admission", SYNC_PENDING))[0]
    assert pending.attempts == 1
    assert "no such table" in pending.last_error
