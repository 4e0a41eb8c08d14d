from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from admitflow.core.schemas import AdmissionRecord


# ----- Submission (IngestGateway input) -----

class AdmissionSubmission(BaseModel):
    """New application. Only name is required; everything else degrades gracefully."""

    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    course: str = Field("", max_length=255)
    campus: Optional[str] = Field(None, max_length=100)
    batch: Optional[str] = Field(None, max_length=100)
    start_date: Optional[date] = Field(None, description="Preferred start; also the default first due date")
    notes: Optional[str] = Field(None, max_length=2000)
    fee_total: Decimal = Field(Decimal("0"), ge=0)


class IngestResponse(BaseModel):
    outcome: str = Field(..., description="stored or buffered")
    strategy: Optional[str] = Field(None, description="Insert strategy that succeeded")
    voucher_ref: str
    pending_sync: bool
    record: AdmissionRecord


class SyncSummary(BaseModel):
    synced: int = 0
    failed: int = 0
    remaining: int = 0


# ----- Actions -----

class AdmissionApprove(BaseModel):
    batch: Optional[str] = Field(None, max_length=100)
    campus: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = Field(None, max_length=2000)


class AdmissionReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class AdmissionRemarks(BaseModel):
    remarks: Optional[str] = Field(None, max_length=2000)


class AdmissionTransfer(BaseModel):
    batch: Optional[str] = Field(None, max_length=100)
    campus: Optional[str] = Field(None, max_length=100)


class AdmissionResponse(AdmissionRecord):
    """Admission with derived fee figures."""

    payment_status: str
    discounted_total: Decimal
    total_paid: Decimal
    pending_amount: Decimal


class PromotionResponse(BaseModel):
    admission: AdmissionResponse
    student_id: str
    student_created: bool
    approved_at: datetime


class AdmissionListResponse(BaseModel):
    items: List[AdmissionResponse]
    total: int
