"""
Publish/subscribe channel for record changes, scoped to one reconciliation service.

Subscribers either get a callback or an asyncio.Queue. Closing a subscription removes it
immediately; nothing is delivered to it afterwards.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from admitflow.core.enums import ChangeEvent

logger = logging.getLogger(__name__)

QUEUE_MAXSIZE = 100


@dataclass
class ChangeNotification:
    table: str
    event: ChangeEvent
    record: Optional[Any] = None  # canonical record for insert/update
    record_id: Optional[str] = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.record_id is None and self.record is not None:
            self.record_id = self.record.id
        if self.record_id is None:
            raise ValueError("Change notification needs a record or a record_id")

    def to_payload(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "event": self.event.value,
            "record_id": self.record_id,
            "record": self.record.model_dump(mode="json") if self.record is not None else None,
            "at": self.at.isoformat(),
        }


def queue_writer(queue: asyncio.Queue) -> Callable[[ChangeNotification], None]:
    """Callback that puts into `queue`, dropping the oldest item when it is full."""

    def _put(note: ChangeNotification) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(note)

    return _put


class Subscription:
    def __init__(self, channel: "ChangeChannel", table: str, callback: Callable[[ChangeNotification], Any]) -> None:
        self._channel = channel
        self.table = table
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._channel._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ChangeChannel:
    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscription]] = defaultdict(list)

    def subscribe(self, table: str, callback: Callable[[ChangeNotification], Any]) -> Subscription:
        sub = Subscription(self, table, callback)
        self._subscribers[table].append(sub)
        return sub

    def subscribe_queue(self, table: str, maxsize: int = QUEUE_MAXSIZE):
        """Returns (subscription, queue). A full queue drops the oldest notification."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        return self.subscribe(table, queue_writer(queue)), queue

    def subscriber_count(self, table: str) -> int:
        return len(self._subscribers.get(table, []))

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.table)
        if subs and sub in subs:
            subs.remove(sub)
        if subs is not None and not subs:
            self._subscribers.pop(sub.table, None)

    def publish(self, note: ChangeNotification) -> None:
        # copy: a callback may close its own subscription
        for sub in list(self._subscribers.get(note.table, [])):
            if sub.closed:
                continue
            try:
                sub.callback(note)
            except Exception:
                logger.exception("Change subscriber for %s failed", note.table)

    def close(self) -> None:
        for subs in list(self._subscribers.values()):
            for sub in list(subs):
                sub.close()
