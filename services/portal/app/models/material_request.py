"""
Student request for materials that are not in the catalog yet.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Index, String

from ..database import Base


class MaterialRequest(Base):
    __tablename__ = "requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    course = Column(String(50), nullable=False)
    email = Column(String(100), nullable=True)  # lower-cased on intake
    details = Column(String(500), nullable=True)  # HTML tags stripped on intake
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Duplicate-window lookup
    __table_args__ = (
        Index('ix_requests_course_email', 'course', 'email'),
    )
