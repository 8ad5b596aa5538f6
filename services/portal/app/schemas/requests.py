"""
Material request schemas.

Field types are deliberately loose on the way in: the intake service reports
every violated rule in one response, so type checking happens there.
"""
from typing import Any, Optional

from pydantic import BaseModel, Field


class MaterialRequestIn(BaseModel):
    course: Any = None
    email: Any = None
    details: Any = None
    captcha_token: Optional[str] = Field(None, alias="captchaToken")

    class Config:
        populate_by_name = True


class MaterialRequestOut(BaseModel):
    id: str
    course: str
    email: Optional[str] = None
    details: Optional[str] = None
    created_at: str

    @classmethod
    def from_record(cls, record) -> "MaterialRequestOut":
        return cls(
            id=record.id,
            course=record.course,
            email=record.email,
            details=record.details,
            created_at=record.created_at.isoformat() if record.created_at else "",
        )


class CaptchaVerifyIn(BaseModel):
    token: Optional[str] = None
