from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text, func

from admitflow.core.models.application import JSONType
from admitflow.db.session import Base


class Certificate(Base):
    __tablename__ = "certificates"

    id = Column(String(64), primary_key=True)
    student_id = Column(String(64), nullable=True)
    batch_id = Column(String(64), nullable=True)
    course_id = Column(String(64), nullable=True)
    certificate_type = Column(String(100), nullable=True)
    requester_name = Column(String(255), nullable=True)
    requester_email = Column(String(255), nullable=True)
    requested_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), nullable=False)
    status = Column(String(30), nullable=False, default="requested")
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    printing_started_at = Column(DateTime(timezone=True), nullable=True)
    ready_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSONType, nullable=True)
    status_history = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)
