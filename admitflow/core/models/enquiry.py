from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text, func

from admitflow.core.models.application import JSONType
from admitflow.db.session import Base


class Enquiry(Base):
    __tablename__ = "enquiries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    course = Column(String(255), nullable=True)
    contact = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    campus = Column(String(100), nullable=True)
    sources = Column(JSONType, nullable=True)
    stage = Column(String(30), nullable=False, default="Prospective")
    status = Column(String(30), nullable=False, default="Pending")
    next_follow = Column(DateTime(timezone=True), nullable=True)
    probability = Column(Integer, nullable=True)
    remarks = Column(Text, nullable=True)
    student_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)
