"""Canonical record types shared by every source adapter, the merger and the services."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from admitflow.core.enums import (
    AdmissionStatus,
    EnquiryStage,
    EnquiryStatus,
    Provenance,
    StudentStatus,
)


class Installment(BaseModel):
    id: str
    amount: Decimal = Field(Decimal("0"), ge=0)
    due_date: datetime
    paid_at: Optional[datetime] = None


class FeeInfo(BaseModel):
    total: Decimal = Field(Decimal("0"), ge=0)
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    installments: List[Installment] = Field(default_factory=list)


class Document(BaseModel):
    name: str
    url: str = "#"
    verified: bool = False


class ContactInfo(BaseModel):
    name: str
    email: str = ""
    phone: str = ""


class CanonicalRecord(BaseModel):
    """Fields every merged record carries: identity, ordering, provenance and version."""

    id: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    source: Provenance
    pending_sync: bool = False


class AdmissionRecord(CanonicalRecord):
    status: AdmissionStatus = AdmissionStatus.PENDING
    student: ContactInfo
    course: str = ""
    batch: str = "TBD"
    campus: str = "Main"
    fee: FeeInfo = Field(default_factory=FeeInfo)
    documents: List[Document] = Field(default_factory=list)
    notes: Optional[str] = None
    student_id: Optional[str] = None
    rejected_reason: Optional[str] = None


class EnquiryRecord(CanonicalRecord):
    name: str
    course: str = ""
    contact: str = ""
    email: Optional[str] = None
    city: str = ""
    campus: Optional[str] = None
    sources: List[str] = Field(default_factory=list)
    stage: EnquiryStage = EnquiryStage.PROSPECTIVE
    status: EnquiryStatus = EnquiryStatus.PENDING
    next_follow_up: Optional[datetime] = None
    probability: int = Field(0, ge=0, le=100)
    remarks: Optional[str] = None
    student_id: Optional[str] = None


class AdmissionInfo(BaseModel):
    course: str = ""
    batch: str = ""
    campus: str = ""
    date: datetime


class AttendanceEntry(BaseModel):
    date: str  # YYYY-MM-DD
    present: bool


class Communication(BaseModel):
    channel: str
    message: str
    at: datetime


class StudentRecord(CanonicalRecord):
    name: str
    email: str = ""
    phone: str = ""
    status: StudentStatus = StudentStatus.CURRENT
    admission: AdmissionInfo
    fee: FeeInfo = Field(default_factory=FeeInfo)
    attendance: List[AttendanceEntry] = Field(default_factory=list)
    documents: List[Document] = Field(default_factory=list)
    communications: List[Communication] = Field(default_factory=list)
    enrolled_courses: List[str] = Field(default_factory=list)
    admission_id: Optional[str] = None
    enquiry_id: Optional[str] = None
