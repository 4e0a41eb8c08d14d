from admitflow.core.models.application import (
    Application,
    ApplicationTracking,
    LegacyAdmission,
    PublicApplication,
)
from admitflow.core.models.audit_log import AuditLog
from admitflow.core.models.certificate import Certificate
from admitflow.core.models.enquiry import Enquiry
from admitflow.core.models.pending_record import PendingRecord
from admitflow.core.models.student import StudentRow

__all__ = [
    "Application",
    "ApplicationTracking",
    "AuditLog",
    "Certificate",
    "Enquiry",
    "LegacyAdmission",
    "PendingRecord",
    "PublicApplication",
    "StudentRow",
]
