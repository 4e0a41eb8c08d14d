"""
Application rows. `applications` is authoritative; `admissions` is the older table with the
same shape; `public_applications` is the degraded fallback used when the primary schema
rejects an insert. Remote schemas drift, so these declarations describe the full known
shape and are only used to create tables; reads and cascading inserts work on raw rows.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from admitflow.db.session import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_app_id() -> str:
    return str(uuid.uuid4())


class Application(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    app_id = Column(String(64), unique=True, nullable=True, default=_new_app_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    course = Column(String(255), nullable=True)
    campus = Column(String(100), nullable=True)
    batch = Column(String(100), nullable=True)
    status = Column(String(30), nullable=False, default="Pending")
    start_date = Column(String(10), nullable=True)
    message = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    fee_total = Column(Numeric(12, 2), nullable=True)
    fee_discount_percent = Column(Numeric(5, 2), nullable=True)
    fee_installments = Column(JSONType, nullable=True)
    documents = Column(JSONType, nullable=True)
    student_id = Column(String(64), nullable=True)
    rejected_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)


class LegacyAdmission(Base):
    __tablename__ = "admissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    app_id = Column(String(64), unique=True, nullable=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    course = Column(String(255), nullable=True)
    campus = Column(String(100), nullable=True)
    batch = Column(String(100), nullable=True)
    status = Column(String(30), nullable=False, default="Pending")
    fee_total = Column(Numeric(12, 2), nullable=True)
    fee_installments = Column(JSONType, nullable=True)
    next_due_date = Column(String(32), nullable=True)
    documents = Column(JSONType, nullable=True)
    notes = Column(Text, nullable=True)
    student_id = Column(String(64), nullable=True)
    rejected_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), nullable=False)


class PublicApplication(Base):
    __tablename__ = "public_applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    course = Column(String(255), nullable=True)
    preferred_start = Column(String(32), nullable=True)
    status = Column(String(30), nullable=False, default="Pending")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), nullable=False)


class ApplicationTracking(Base):
    """Companion row written after a successful remote application insert."""

    __tablename__ = "application_tracking"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference = Column(String(64), nullable=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    course = Column(String(255), nullable=True)
    status = Column(String(30), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), nullable=False)
