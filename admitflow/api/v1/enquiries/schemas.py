from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from admitflow.core.enums import EnquiryStage
from admitflow.core.schemas import EnquiryRecord


class EnquiryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    course: str = Field(..., min_length=1, max_length=255)
    contact: str = Field(..., min_length=1, max_length=50)
    email: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    campus: Optional[str] = Field(None, max_length=100)
    sources: List[str] = Field(default_factory=list, description="How the enquiry reached us, e.g. Website, Walk-in")
    next_follow_up: Optional[datetime] = None
    probability: int = Field(50, ge=0, le=100)
    remarks: Optional[str] = Field(None, max_length=2000)


class EnquiryFollowUp(BaseModel):
    next_follow_up: Optional[datetime] = None
    remarks: Optional[str] = Field(None, max_length=2000)
    probability: Optional[int] = Field(None, ge=0, le=100)


class EnquiryStageUpdate(BaseModel):
    """Omit stage to advance to the next one in the cycle."""

    stage: Optional[EnquiryStage] = None


class EnquiryConvert(BaseModel):
    fee_total: Decimal = Field(Decimal("0"), ge=0)
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)


class EnquiryConvertResponse(BaseModel):
    enquiry: EnquiryRecord
    student_id: str
    student_created: bool


class EnquiryListResponse(BaseModel):
    items: List[EnquiryRecord]
    total: int


class EnquiryImportError(BaseModel):
    row: int
    reason: str


class EnquiryImportResult(BaseModel):
    imported: int
    skipped: int
    errors: List[EnquiryImportError] = Field(default_factory=list)
    items: List[EnquiryRecord] = Field(default_factory=list)
