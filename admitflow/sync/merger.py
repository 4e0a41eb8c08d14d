"""
Merge canonical records from several sources into one deduplicated view.

Precedence is an explicit MergePolicy: a rank per provenance, lower wins. A locally buffered
record outranks everything while it is still pending sync, so unsent edits stay visible; once
synced it ranks below every remote source. Equal ranks keep the newer updated_at.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

from admitflow.core.enums import Provenance
from admitflow.core.schemas import CanonicalRecord

R = TypeVar("R", bound=CanonicalRecord)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DEFAULT_RANKS: Dict[Provenance, int] = {
    Provenance.APPLICATIONS: 0,
    Provenance.STUDENTS: 0,
    Provenance.ENQUIRIES: 0,
    Provenance.ADMISSIONS: 1,
    Provenance.PUBLIC_APPLICATIONS: 2,
    Provenance.PUBLIC_API: 2,
    Provenance.LOCAL_BUFFER: 3,
}


@dataclass(frozen=True)
class MergePolicy:
    ranks: Mapping[Provenance, int] = field(default_factory=lambda: dict(DEFAULT_RANKS))
    pending_local_wins: bool = True

    def rank(self, record: CanonicalRecord) -> int:
        if self.pending_local_wins and record.pending_sync:
            return -1
        return self.ranks.get(record.source, max(self.ranks.values(), default=0) + 1)

    def prefer(self, current: R, candidate: R) -> R:
        """Return whichever of two records with the same id should be kept."""
        current_rank, candidate_rank = self.rank(current), self.rank(candidate)
        if candidate_rank != current_rank:
            return candidate if candidate_rank < current_rank else current
        if _version(candidate) > _version(current):
            return candidate
        return current


DEFAULT_POLICY = MergePolicy()


def _version(record: CanonicalRecord) -> datetime:
    return record.updated_at or record.created_at or _EPOCH


def sort_records(records: Iterable[R]) -> List[R]:
    """created_at descending; ties broken by id so the order is total."""
    by_id = sorted(records, key=lambda r: r.id)
    return sorted(by_id, key=lambda r: r.created_at, reverse=True)


def merge_records(
    sources: Sequence[Iterable[R]],
    policy: Optional[MergePolicy] = None,
) -> List[R]:
    """
    Collapse records sharing a canonical id to one, chosen by `policy`, and sort the result.
    Merging the merged output again returns the same list.
    """
    policy = policy or DEFAULT_POLICY
    merged: Dict[str, R] = {}
    for records in sources:
        for record in records:
            held = merged.get(record.id)
            merged[record.id] = record if held is None else policy.prefer(held, record)
    return sort_records(merged.values())
