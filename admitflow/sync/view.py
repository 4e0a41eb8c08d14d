"""
Live merged views: a keyed collection fed by pushed change notifications and by periodic refetches.

Both paths are version-aware (updated_at), so a poll result fetched before a newer push cannot
regress it, and a record deleted by push is not resurrected by a stale poll.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from admitflow.core.enums import ChangeEvent
from admitflow.core.schemas import CanonicalRecord
from admitflow.sync.channel import ChangeChannel, ChangeNotification, Subscription
from admitflow.sync.merger import sort_records

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _version(record: CanonicalRecord) -> datetime:
    return record.updated_at or record.created_at or _EPOCH


class MergedView:
    def __init__(self, table: str = "") -> None:
        self.table = table
        self._records: Dict[str, CanonicalRecord] = {}
        self._deleted: Dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    def get(self, record_id: str) -> Optional[CanonicalRecord]:
        return self._records.get(record_id)

    def records(self) -> List[CanonicalRecord]:
        return sort_records(self._records.values())

    def apply(self, note: ChangeNotification) -> bool:
        """
        Apply one change. Returns True when the view changed.
        insert adds only an absent id; update replaces, or inserts when absent;
        delete of an absent id is a no-op; a change older than the held version is ignored.
        """
        if note.event == ChangeEvent.DELETE:
            self._deleted[note.record_id] = note.at
            return self._records.pop(note.record_id, None) is not None

        record = note.record
        if record is None:
            return False
        held = self._records.get(record.id)
        if held is not None and note.event == ChangeEvent.INSERT:
            return False
        if held is not None and _version(record) < _version(held):
            logger.debug("Ignoring stale %s for %s", note.event.value, record.id)
            return False
        self._records[record.id] = record
        self._deleted.pop(record.id, None)
        return True

    def replace_all(
        self,
        records: Iterable[CanonicalRecord],
        fetched_at: Optional[datetime] = None,
    ) -> List[ChangeNotification]:
        """
        Replace the collection with a fresh fetch that started at `fetched_at`.
        Held records newer than their fetched copy win, held records changed after the fetch
        started survive even when missing from it, and ids deleted after it started stay deleted.
        Returns the changes the fetch made, as notifications.
        """
        fetched_at = fetched_at or datetime.now(timezone.utc)
        fresh: Dict[str, CanonicalRecord] = {}
        for record in records:
            deleted_at = self._deleted.get(record.id)
            if deleted_at is not None and deleted_at >= fetched_at:
                continue
            held = self._records.get(record.id)
            if held is not None and _version(held) > _version(record):
                fresh[record.id] = held
            else:
                fresh[record.id] = record
        for record_id, held in self._records.items():
            if record_id not in fresh and _version(held) > fetched_at:
                fresh[record_id] = held
        changes = _diff(self.table, self._records, fresh)
        self._records = fresh
        self._deleted = {k: v for k, v in self._deleted.items() if v >= fetched_at}
        return changes


def _diff(
    table: str,
    before: Dict[str, CanonicalRecord],
    after: Dict[str, CanonicalRecord],
) -> List[ChangeNotification]:
    changes = []
    for record_id, record in after.items():
        held = before.get(record_id)
        if held is None:
            changes.append(ChangeNotification(table=table, event=ChangeEvent.INSERT, record=record))
        elif held is not record and held != record:
            changes.append(ChangeNotification(table=table, event=ChangeEvent.UPDATE, record=record))
    for record_id in before:
        if record_id not in after:
            changes.append(ChangeNotification(table=table, event=ChangeEvent.DELETE, record_id=record_id))
    return changes


class LiveView:
    """
    A MergedView kept fresh by a channel subscription plus a fixed-interval refetch.
    close() releases the subscription and cancels the poll task; results that land after close are dropped.
    `listener`, when given, receives every change that altered the view after start(), pushed or polled.
    """

    def __init__(
        self,
        table: str,
        fetch: Callable[[], Awaitable[List[CanonicalRecord]]],
        channel: ChangeChannel,
        interval: float,
        listener: Optional[Callable[[ChangeNotification], Any]] = None,
    ) -> None:
        self.table = table
        self._listener = listener
        self._fetch = fetch
        self._channel = channel
        self._interval = interval
        self.view = MergedView(table)
        self.closed = False
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> "LiveView":
        self._subscription = self._channel.subscribe(self.table, self._on_change)
        await self._load(notify=False)
        if self._interval and self._interval > 0:
            self._task = asyncio.create_task(self._poll())
        return self

    def _emit(self, note: ChangeNotification) -> None:
        if self._listener is None:
            return
        try:
            self._listener(note)
        except Exception:
            logger.exception("Live view listener for %s failed", self.table)

    def _on_change(self, note: ChangeNotification) -> None:
        if not self.closed and self.view.apply(note):
            self._emit(note)

    async def refresh(self) -> None:
        await self._load(notify=True)

    async def _load(self, notify: bool) -> None:
        started = datetime.now(timezone.utc)
        records = await self._fetch()
        if self.closed:
            logger.debug("Discarding %s fetch that completed after close", self.table)
            return
        changes = self.view.replace_all(records, started)
        if notify:
            for note in changes:
                self._emit(note)

    async def _poll(self) -> None:
        while not self.closed:
            await asyncio.sleep(self._interval)
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Periodic refresh of %s failed", self.table)

    def records(self) -> List[Any]:
        return self.view.records()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._subscription is not None:
            self._subscription.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def __aenter__(self) -> "LiveView":
        return await self.start()

    async def __aexit__(self, *exc) -> None:
        await self.close()
