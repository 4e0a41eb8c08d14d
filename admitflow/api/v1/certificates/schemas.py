from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from admitflow.core.enums import CertificateStatus


class CertificateCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: Optional[str] = Field(None, alias="studentId", max_length=64)
    batch_id: Optional[str] = Field(None, alias="batchId", max_length=64)
    course_id: Optional[str] = Field(None, alias="courseId", max_length=64)
    certificate_type: Optional[str] = Field(None, alias="certificateType", max_length=100)
    requester_name: Optional[str] = Field(None, alias="requesterName", max_length=255)
    requester_email: Optional[str] = Field(None, alias="requesterEmail", max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)
    metadata: Optional[Dict[str, Any]] = None


class CertificateStatusUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: CertificateStatus
    admin_id: Optional[str] = Field(None, alias="adminId", max_length=64)
    note: Optional[str] = Field(None, max_length=2000)


class StatusHistoryEntry(BaseModel):
    status: str
    at: datetime
    by: Optional[str] = None
    note: Optional[str] = None


class CertificateItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    student_id: Optional[str] = Field(None, alias="studentId")
    batch_id: Optional[str] = Field(None, alias="batchId")
    course_id: Optional[str] = Field(None, alias="courseId")
    certificate_type: Optional[str] = Field(None, alias="certificateType")
    requester_name: Optional[str] = Field(None, alias="requesterName")
    requester_email: Optional[str] = Field(None, alias="requesterEmail")
    requested_at: datetime = Field(..., alias="requestedAt")
    status: CertificateStatus = CertificateStatus.REQUESTED
    approved_by: Optional[str] = Field(None, alias="approvedBy")
    approved_at: Optional[datetime] = Field(None, alias="approvedAt")
    printing_started_at: Optional[datetime] = Field(None, alias="printingStartedAt")
    ready_at: Optional[datetime] = Field(None, alias="readyAt")
    delivered_at: Optional[datetime] = Field(None, alias="deliveredAt")
    cancelled_at: Optional[datetime] = Field(None, alias="cancelledAt")
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    status_history: List[StatusHistoryEntry] = Field(default_factory=list, alias="statusHistory")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    pending_sync: bool = Field(False, alias="pendingSync")


class CertificateResponse(BaseModel):
    ok: bool = True
    item: CertificateItem


class CertificateListResponse(BaseModel):
    ok: bool = True
    items: List[CertificateItem]


class CertificateDeleteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    removed_id: str = Field(..., alias="removedId")
