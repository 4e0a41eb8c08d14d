"""
Audit logging for enquiry, admission and student state changes. Call on every state change.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from admitflow.core.exceptions import ServiceError
from admitflow.db.remote import RemoteStore

logger = logging.getLogger(__name__)

AUDIT_TABLE = "audit_logs"


async def log_audit(
    remote: RemoteStore,
    entity_type: str,
    entity_id: str,
    action: str,
    *,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    remarks: Optional[str] = None,
) -> None:
    """Append one audit log entry. A failed write is logged and never fails the state change."""
    if not remote.available:
        logger.info("audit %s %s %s: %s -> %s", entity_type, entity_id, action, from_status, to_status)
        return
    entry = {
        "id": str(uuid.uuid4()),
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "from_status": from_status,
        "to_status": to_status,
        "action": action,
        "remarks": remarks,
        "timestamp": datetime.now(timezone.utc),
    }
    try:
        await remote.insert_row(AUDIT_TABLE, entry)
    except ServiceError as e:
        logger.warning("Audit entry for %s %s not written: %s", entity_type, entity_id, e.message)
