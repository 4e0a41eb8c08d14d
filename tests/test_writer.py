from datetime import datetime, timezone

from admitflow.core.enums import AdmissionStatus, Provenance, StudentStatus
from admitflow.core.models.pending_record import OVERLAY_KEY, SYNC_PENDING, SYNC_SYNCED
from admitflow.core.schemas import AdmissionInfo, AdmissionRecord, ContactInfo, StudentRecord
from admitflow.db.remote import RemoteStore
from admitflow.db.writer import RecordWriter
from conftest import run_ddl

NOW = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)


def _admission(id_="1", **overrides) -> AdmissionRecord:
    data = dict(
        id=id_,
        created_at=NOW,
        source=Provenance.APPLICATIONS,
        student=ContactInfo(name="Ali Raza", email="ali@example.com", phone="0300"),
        course="Python",
    )
    data.update(overrides)
    return AdmissionRecord(**data)


def _student(id_="STU-ALI26000001") -> StudentRecord:
    return StudentRecord(
        id=id_,
        created_at=NOW,
        source=Provenance.STUDENTS,
        name="Ali Raza",
        admission=AdmissionInfo(course="Python", batch="B1", campus="Main", date=NOW),
    )


async def test_update_narrows_to_columns_the_schema_has(bare_remote_engine, local_buffer) -> None:
    await run_ddl(
        bare_remote_engine,
        "CREATE TABLE applications (id INTEGER PRIMARY KEY AUTOINCREMENT, app_id TEXT, name TEXT, status TEXT, student_id TEXT)",
        "INSERT INTO applications (name, status) VALUES ('Ali Raza', 'Pending')",
    )
    store = RemoteStore(bare_remote_engine)
    writer = RecordWriter(store, local_buffer)

    record = _admission(status=AdmissionStatus.VERIFIED, student_id="STU-ALI26000001")
    saved = await writer.save_admission(record, ("status", "student_id", "rejected_reason"))

    assert saved.source == Provenance.APPLICATIONS
    assert saved.pending_sync is False
    row = (await store.fetch_rows("applications"))[0]
    assert row["status"] == "Verified"
    assert row["student_id"] == "STU-ALI26000001"
    assert await local_buffer.list("admission") == []


async def test_missing_remote_row_becomes_overlay(writer, local_buffer) -> None:
    saved = await writer.save_admission(_admission("99", status=AdmissionStatus.SUSPENDED), ("status",))

    assert saved.source == Provenance.LOCAL_BUFFER
    assert saved.pending_sync is True
    overlay = await local_buffer.get("admission:99")
    assert overlay.payload["status"] == "Suspended"
    assert overlay.payload[OVERLAY_KEY] == {"table": "applications", "keys": ["app_id", "id"], "record_id": "99"}


async def test_repeated_edits_share_one_overlay(offline_store, local_buffer) -> None:
    writer = RecordWriter(offline_store, local_buffer)
    await writer.save_admission(_admission("5", status=AdmissionStatus.CANCELLED), ("status",))
    # a second edit lands on the same overlay row
    await writer.save_admission(_admission("5", status=AdmissionStatus.SUSPENDED), ("status",))

    rows = await local_buffer.list("admission")
    assert [r.id for r in rows] == ["admission:5"]
    assert rows[0].payload["status"] == "Suspended"


async def test_replay_writes_overlay_through(remote_store, offline_store, local_buffer) -> None:
    await remote_store.insert_row("applications", {"name": "Ali Raza", "status": "Pending", "course": "Python"})
    await RecordWriter(offline_store, local_buffer).save_admission(
        _admission("1", status=AdmissionStatus.REJECTED, rejected_reason="Duplicate"),
        ("status", "rejected_reason"),
    )

    summary = await RecordWriter(remote_store, local_buffer).replay()

    assert summary == {"synced": 1, "failed": 0}
    row = (await remote_store.fetch_rows("applications"))[0]
    assert row["status"] == "Rejected"
    assert row["rejected_reason"] == "Duplicate"
    overlay = await local_buffer.get("admission:1")
    assert overlay.sync_state == SYNC_SYNCED


async def test_replay_is_noop_offline(offline_store, local_buffer) -> None:
    writer = RecordWriter(offline_store, local_buffer)
    await writer.save_admission(_admission("3", status=AdmissionStatus.CANCELLED), ("status",))
    assert await writer.replay() == {"synced": 0, "failed": 0}
    assert len(await local_buffer.list("admission", SYNC_PENDING)) == 1


async def test_enquiry_insert_narrows(bare_remote_engine, local_buffer) -> None:
    await run_ddl(
        bare_remote_engine,
        "CREATE TABLE enquiries (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, course TEXT, "
        "contact TEXT, email TEXT, status TEXT, stage TEXT, created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)",
    )
    writer = RecordWriter(RemoteStore(bare_remote_engine), local_buffer)
    enquiry = await writer.create_enquiry(
        {
            "name": "Hina Tariq",
            "course": "Data Science",
            "contact": "03211234567",
            "city": "Karachi",
            "sources": ["Facebook"],
            "stage": "Prospective",
            "status": "Pending",
            "probability": 70,
            "remarks": "Call after 5pm",
        }
    )

    assert enquiry.source == Provenance.ENQUIRIES
    assert enquiry.id == "1"
    assert enquiry.remarks == "Call after 5pm"
    assert enquiry.city == "Karachi"
    assert await local_buffer.list("enquiry") == []


async def test_enquiry_buffered_offline_then_replayed(offline_store, remote_store, local_buffer) -> None:
    enquiry = await RecordWriter(offline_store, local_buffer).create_enquiry(
        {"name": "Hina Tariq", "course": "Data Science", "contact": "0321", "status": "Pending", "stage": "Prospective"}
    )
    assert enquiry.pending_sync is True
    assert enquiry.id.startswith("local-")

    summary = await RecordWriter(remote_store, local_buffer).replay()

    assert summary == {"synced": 1, "failed": 0}
    rows = await remote_store.fetch_rows("enquiries")
    assert rows[0]["name"] == "Hina Tariq"
    assert (await local_buffer.get(enquiry.id)).remote_id == str(rows[0]["id"])


async def test_student_upsert(writer, remote_store) -> None:
    student = _student()
    saved = await writer.save_student(student)
    await writer.save_student(saved.model_copy(update={"status": StudentStatus.FREEZE}))

    rows = await remote_store.fetch_rows("students")
    assert len(rows) == 1
    assert rows[0]["id"] == student.id
    assert saved.source == Provenance.STUDENTS


async def test_student_kept_locally_then_replayed(offline_store, remote_store, local_buffer) -> None:
    saved = await RecordWriter(offline_store, local_buffer).save_student(_student())
    assert saved.pending_sync is True

    summary = await RecordWriter(remote_store, local_buffer).replay()

    assert summary == {"synced": 1, "failed": 0}
    rows = await remote_store.fetch_rows("students")
    assert rows[0]["id"] == "STU-ALI26000001"


async def test_delete_admission_removes_overlay_and_row(remote_store, local_buffer, writer) -> None:
    stored = await remote_store.insert_row("applications", {"name": "Ali Raza", "status": "Pending"})
    record = _admission(str(stored["id"]))
    await RecordWriter(RemoteStore(None), local_buffer).save_admission(record, ("status",))

    await writer.delete_admission(record)

    assert await remote_store.fetch_rows("applications") == []
    assert await local_buffer.list("admission") == []
