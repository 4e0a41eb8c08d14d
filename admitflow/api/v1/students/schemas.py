from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from admitflow.core.enums import StudentStatus
from admitflow.core.schemas import Installment, StudentRecord


class StudentResponse(StudentRecord):
    payment_status: str
    discounted_total: Decimal
    total_paid: Decimal
    pending_amount: Decimal


class StudentListResponse(BaseModel):
    items: List[StudentResponse]
    total: int


class StudentStatusUpdate(BaseModel):
    status: StudentStatus
    remarks: Optional[str] = Field(None, max_length=2000)


class AttendanceMark(BaseModel):
    date: date
    present: bool = True


class InstallmentCreate(BaseModel):
    """Amount is ignored for the 3rd installment; it takes the remainder."""

    amount: Optional[Decimal] = Field(None, ge=0)
    due_date: datetime


class InstallmentResponse(BaseModel):
    student: StudentResponse
    installment: Installment
    clamped: bool = False


class DiscountUpdate(BaseModel):
    discount_percent: Decimal = Field(..., ge=0, le=100)


class FeeCollect(BaseModel):
    """Omit installment_id to collect the next unpaid one."""

    installment_id: Optional[str] = None


class StudentTransfer(BaseModel):
    batch: Optional[str] = Field(None, max_length=100)
    campus: Optional[str] = Field(None, max_length=100)


class CourseEnroll(BaseModel):
    course: str = Field(..., min_length=1, max_length=255)
    fee_amount: Decimal = Field(Decimal("0"), ge=0, description="Added to the fee total")


class CommunicationCreate(BaseModel):
    channel: str = Field(..., min_length=1, max_length=50, description="e.g. SMS, Email, Call")
    message: str = Field(..., min_length=1, max_length=2000)
