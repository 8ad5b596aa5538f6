"""
Catalogued course-material document.

The legacy table keeps its spaced column names ("course code" etc.); they are
mapped once here onto canonical attribute names.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Index, String

from ..database import Base


class Document(Base):
    """
    One uploaded PDF plus its metadata.

    path is unique and is the authoritative link to the stored object.
    """
    __tablename__ = "pdfs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    path = Column(String, nullable=False, unique=True)

    title = Column(String, nullable=True)
    course_code = Column("course code", String, nullable=False)
    course_number = Column("course number", String, nullable=False)
    course_name = Column("course name", String, nullable=True)
    professor = Column(String, nullable=False)
    date = Column(Date, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('ix_pdfs_course', 'course code', 'course number'),
    )
