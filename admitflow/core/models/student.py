"""Student rows keep the whole canonical record as one JSON document keyed by student id."""

from datetime import datetime

from sqlalchemy import Column, DateTime, String

from admitflow.core.models.application import JSONType
from admitflow.db.session import Base


class StudentRow(Base):
    __tablename__ = "students"

    id = Column(String(64), primary_key=True)
    record = Column(JSONType, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)
