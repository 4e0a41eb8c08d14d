from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PublicApplicationCreate(BaseModel):
    """Unauthenticated application form payload (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    course: str = Field("", max_length=255)
    preferred_start: Optional[date] = Field(None, alias="preferredStart")


class PublicApplicationItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    created_at: datetime = Field(..., alias="createdAt")
    name: str
    email: str = ""
    phone: str = ""
    course: str = ""
    preferred_start: Optional[str] = Field(None, alias="preferredStart")
    status: str = "Pending"
    pending_sync: bool = Field(False, alias="pendingSync")


class PublicApplicationResponse(BaseModel):
    ok: bool = True
    item: PublicApplicationItem


class PublicApplicationListResponse(BaseModel):
    ok: bool = True
    items: List[PublicApplicationItem]
