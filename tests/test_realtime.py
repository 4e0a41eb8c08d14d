import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from admitflow.api.v1.realtime.router import event_stream, format_sse
from admitflow.core.enums import AdmissionStatus, ChangeEvent, Provenance
from admitflow.core.schemas import AdmissionRecord, ContactInfo
from admitflow.sync.channel import ChangeChannel, ChangeNotification
from admitflow.sync.reconciliation import TABLE_ADMISSIONS, ReconciliationService
from admitflow.sync.view import LiveView, MergedView

T0 = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)


def _record(id_, updated=T0, status=AdmissionStatus.PENDING, created=T0) -> AdmissionRecord:
    return AdmissionRecord(
        id=id_,
        created_at=created,
        updated_at=updated,
        source=Provenance.APPLICATIONS,
        student=ContactInfo(name=f"Student {id_}"),
        status=status,
    )


def _note(event, record=None, record_id=None, at=None) -> ChangeNotification:
    note = ChangeNotification(table=TABLE_ADMISSIONS, event=event, record=record, record_id=record_id)
    if at is not None:
        note.at = at
    return note


# ----- MergedView -----

def test_update_of_absent_id_inserts() -> None:
    view = MergedView()
    assert view.apply(_note(ChangeEvent.UPDATE, _record("1"))) is True
    assert "1" in view


def test_insert_of_present_id_is_ignored() -> None:
    view = MergedView()
    view.apply(_note(ChangeEvent.INSERT, _record("1")))
    later = _record("1", updated=T0 + timedelta(seconds=1), status=AdmissionStatus.CANCELLED)
    assert view.apply(_note(ChangeEvent.INSERT, later)) is False
    assert view.get("1").status == AdmissionStatus.PENDING


def test_delete_of_absent_id_is_noop() -> None:
    view = MergedView()
    assert view.apply(_note(ChangeEvent.DELETE, record_id="404")) is False
    assert len(view) == 0


def test_stale_update_ignored() -> None:
    view = MergedView()
    view.apply(_note(ChangeEvent.INSERT, _record("1", updated=T0 + timedelta(minutes=5), status=AdmissionStatus.VERIFIED)))
    assert view.apply(_note(ChangeEvent.UPDATE, _record("1", updated=T0))) is False
    assert view.get("1").status == AdmissionStatus.VERIFIED


def test_records_sorted_newest_first() -> None:
    view = MergedView()
    for n in range(3):
        view.apply(_note(ChangeEvent.INSERT, _record(str(n), created=T0 + timedelta(days=n))))
    assert [r.id for r in view.records()] == ["2", "1", "0"]


def test_poll_does_not_regress_newer_push() -> None:
    view = MergedView()
    fetch_started = datetime.now(timezone.utc)
    pushed = _record("1", updated=fetch_started + timedelta(seconds=1), status=AdmissionStatus.SUSPENDED)
    view.apply(_note(ChangeEvent.UPDATE, pushed))
    view.replace_all([_record("1", updated=T0)], fetch_started)
    assert view.get("1").status == AdmissionStatus.SUSPENDED


def test_poll_does_not_resurrect_deleted_record() -> None:
    view = MergedView()
    view.apply(_note(ChangeEvent.INSERT, _record("1")))
    fetch_started = datetime.now(timezone.utc) - timedelta(seconds=1)
    view.apply(_note(ChangeEvent.DELETE, record_id="1"))
    view.replace_all([_record("1"), _record("2")], fetch_started)
    assert "1" not in view
    assert "2" in view


def test_poll_replaces_collection() -> None:
    view = MergedView()
    view.apply(_note(ChangeEvent.INSERT, _record("old")))
    view.replace_all([_record("new")], T0 + timedelta(days=1))
    assert [r.id for r in view.records()] == ["new"]


def test_poll_reports_its_changes() -> None:
    view = MergedView(TABLE_ADMISSIONS)
    view.replace_all([_record("1"), _record("2")], T0)
    changes = view.replace_all(
        [_record("1"), _record("2", updated=T0 + timedelta(hours=1), status=AdmissionStatus.VERIFIED), _record("3")],
        T0 + timedelta(hours=2),
    )
    assert [(n.event, n.record_id) for n in changes] == [(ChangeEvent.UPDATE, "2"), (ChangeEvent.INSERT, "3")]

    changes = view.replace_all([_record("3")], T0 + timedelta(hours=3))
    assert sorted((n.event.value, n.record_id) for n in changes) == [("delete", "1"), ("delete", "2")]
    assert all(n.table == TABLE_ADMISSIONS for n in changes)


# ----- ChangeChannel -----

def test_notification_needs_an_id() -> None:
    with pytest.raises(ValueError):
        ChangeNotification(table=TABLE_ADMISSIONS, event=ChangeEvent.DELETE)


def test_closed_subscription_receives_nothing() -> None:
    channel = ChangeChannel()
    received = []
    sub = channel.subscribe(TABLE_ADMISSIONS, received.append)
    channel.publish(_note(ChangeEvent.INSERT, _record("1")))
    sub.close()
    channel.publish(_note(ChangeEvent.INSERT, _record("2")))

    assert [n.record_id for n in received] == ["1"]
    assert channel.subscriber_count(TABLE_ADMISSIONS) == 0


def test_failing_subscriber_does_not_block_others() -> None:
    channel = ChangeChannel()
    received = []

    def broken(note):
        raise RuntimeError("boom")

    channel.subscribe(TABLE_ADMISSIONS, broken)
    channel.subscribe(TABLE_ADMISSIONS, received.append)
    channel.publish(_note(ChangeEvent.INSERT, _record("1")))
    assert len(received) == 1


async def test_full_queue_drops_oldest() -> None:
    channel = ChangeChannel()
    _, queue = channel.subscribe_queue(TABLE_ADMISSIONS, maxsize=2)
    for n in range(3):
        channel.publish(_note(ChangeEvent.INSERT, _record(str(n))))
    assert queue.qsize() == 2
    assert queue.get_nowait().record_id == "1"


# ----- LiveView -----

async def test_live_view_applies_pushes_until_closed() -> None:
    channel = ChangeChannel()
    rows = [_record("1")]

    async def fetch():
        return list(rows)

    view = await LiveView(TABLE_ADMISSIONS, fetch, channel, interval=0).start()
    assert [r.id for r in view.records()] == ["1"]

    channel.publish(_note(ChangeEvent.INSERT, _record("2", created=T0 + timedelta(hours=1))))
    assert [r.id for r in view.records()] == ["2", "1"]

    await view.close()
    assert channel.subscriber_count(TABLE_ADMISSIONS) == 0
    rows.append(_record("3"))
    await view.refresh()
    assert [r.id for r in view.records()] == ["2", "1"]


async def test_live_view_listener_gets_only_changes() -> None:
    channel = ChangeChannel()
    rows = [_record("1")]
    heard = []

    async def fetch():
        return list(rows)

    view = await LiveView(TABLE_ADMISSIONS, fetch, channel, interval=0, listener=heard.append).start()
    assert heard == []

    channel.publish(_note(ChangeEvent.INSERT, _record("1")))
    channel.publish(_note(ChangeEvent.INSERT, _record("2")))
    rows.append(_record("2"))
    rows.append(_record("3"))
    await view.refresh()

    assert [(n.event, n.record_id) for n in heard] == [(ChangeEvent.INSERT, "2"), (ChangeEvent.INSERT, "3")]
    await view.close()


async def test_live_view_polls_until_closed() -> None:
    channel = ChangeChannel()
    calls = []

    async def fetch():
        calls.append(1)
        return []

    async with LiveView(TABLE_ADMISSIONS, fetch, channel, interval=0.01):
        await asyncio.sleep(0.05)
    count = len(calls)
    assert count > 1
    await asyncio.sleep(0.03)
    assert len(calls) == count


# ----- Event stream -----

def test_format_sse() -> None:
    assert format_sse("insert", {"a": 1}) == 'event: insert\ndata: {"a": 1}\n\n'


async def test_event_stream_snapshot_changes_and_cleanup(recon) -> None:
    stream = event_stream(recon, TABLE_ADMISSIONS, keepalive=0.05)

    snapshot = await stream.__anext__()
    assert snapshot.startswith("event: snapshot\n")
    assert json.loads(snapshot.split("data: ", 1)[1])["items"] == []
    assert recon.channel.subscriber_count(TABLE_ADMISSIONS) == 1

    recon.publish(TABLE_ADMISSIONS, ChangeEvent.INSERT, _record("9"))
    change = await stream.__anext__()
    assert change.startswith("event: insert\n")
    payload = json.loads(change.split("data: ", 1)[1])
    assert payload["record_id"] == "9"
    assert payload["record"]["student"]["name"] == "Student 9"

    assert await stream.__anext__() == ": keepalive\n\n"

    await stream.aclose()
    assert recon.channel.subscriber_count(TABLE_ADMISSIONS) == 0


async def test_event_stream_sends_rows_found_by_refetch(remote_store, local_buffer) -> None:
    recon = ReconciliationService(remote_store, local_buffer, poll_interval=0.02)
    stream = event_stream(recon, TABLE_ADMISSIONS, keepalive=5)
    snapshot = await stream.__anext__()
    assert json.loads(snapshot.split("data: ", 1)[1])["items"] == []

    # written behind the service's back, so only the refetch can see it
    await remote_store.insert_row("applications", {"name": "Hamza Tariq", "status": "Pending"})
    change = await asyncio.wait_for(stream.__anext__(), timeout=2)
    assert change.startswith("event: insert\n")
    assert json.loads(change.split("data: ", 1)[1])["record"]["student"]["name"] == "Hamza Tariq"

    await stream.aclose()
    await recon.close()
    assert recon.channel.subscriber_count(TABLE_ADMISSIONS) == 0
