"""
Admin membership, keyed by the auth provider's user id.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String

from ..database import Base


class Admin(Base):
    __tablename__ = "admins"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, unique=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
