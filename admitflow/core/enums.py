from enum import Enum


class EnquiryStage(str, Enum):
    PROSPECTIVE = "Prospective"
    NEED_ANALYSIS = "NeedAnalysis"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"


class EnquiryStatus(str, Enum):
    PENDING = "Pending"
    ENROLLED = "Enrolled"
    NOT_INTERESTED = "NotInterested"


class AdmissionStatus(str, Enum):
    PENDING = "Pending"
    VERIFIED = "Verified"
    REJECTED = "Rejected"
    SUSPENDED = "Suspended"
    CANCELLED = "Cancelled"


class StudentStatus(str, Enum):
    CURRENT = "Current"
    FREEZE = "Freeze"
    CONCLUDED = "Concluded"
    NOT_COMPLETED = "NotCompleted"
    SUSPENDED = "Suspended"
    ALUMNI = "Alumni"


class PaymentStatus(str, Enum):
    PAID = "Paid"
    OVERDUE = "Overdue"
    PENDING = "Pending"


class Provenance(str, Enum):
    """Where a canonical record was read from."""

    APPLICATIONS = "applications"
    ADMISSIONS = "admissions"
    PUBLIC_APPLICATIONS = "public_applications"
    PUBLIC_API = "public_api"
    ENQUIRIES = "enquiries"
    STUDENTS = "students"
    LOCAL_BUFFER = "local_buffer"


class ChangeEvent(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class CertificateStatus(str, Enum):
    REQUESTED = "requested"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PRINTING = "printing"
    READY_FOR_COLLECTION = "ready_for_collection"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Legacy spellings seen in stored rows.
STATUS_ALIASES = {
    "Not Interested": EnquiryStatus.NOT_INTERESTED.value,
    "Not Completed": StudentStatus.NOT_COMPLETED.value,
    "Need Analysis": EnquiryStage.NEED_ANALYSIS.value,
}
