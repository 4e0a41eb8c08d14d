"""
Local buffer row: a submission or edit that has not reached the remote store yet.
Lives in the on-device SQLite database, never in the remote one.
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, func

from admitflow.db.session import LocalBase

SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
# Payload key marking an edit of an existing remote row rather than a new record:
# {"table": ..., "keys": [...], "record_id": ...}; table is None when the source is read-only.
OVERLAY_KEY = "_overlay"


class PendingRecord(LocalBase):
    __tablename__ = "pending_records"

    id = Column(String(64), primary_key=True)
    entity = Column(String(30), nullable=False, index=True)  # admission, enquiry, student, certificate
    payload = Column(JSON, nullable=False)
    sync_state = Column(String(20), nullable=False, default=SYNC_PENDING)
    remote_id = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
