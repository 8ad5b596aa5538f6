"""
Document schemas for the public catalog and the admin console.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from app.core.term import term_for_date
from app.schemas.responses import PaginationMeta


class DocumentOut(BaseModel):
    id: str
    path: str
    title: Optional[str] = None
    course_code: str
    course_number: str
    course_name: Optional[str] = None
    professor: str
    date: str = Field(..., description="Exam date, YYYY-MM-DD")

    @classmethod
    def from_document(cls, document) -> "DocumentOut":
        return cls(
            id=document.id,
            path=document.path,
            title=document.title,
            course_code=document.course_code,
            course_number=document.course_number,
            course_name=document.course_name,
            professor=document.professor,
            date=document.date.isoformat() if document.date else "",
        )


class BrowseItem(DocumentOut):
    term: str = Field("", description="Academic term label, e.g. 'Fall 2024'")

    @classmethod
    def from_document(cls, document) -> "BrowseItem":
        base = DocumentOut.from_document(document)
        return cls(**base.model_dump(), term=term_for_date(document.date))


class BrowseOptions(BaseModel):
    """Cascading filter choices, derived from the full catalog."""
    course_codes: List[str] = Field(default_factory=list)
    course_numbers: List[str] = Field(default_factory=list)
    professors: List[str] = Field(default_factory=list)


class BrowseState(BaseModel):
    course_code: Optional[str] = None
    course_number: Optional[str] = None
    professor: Optional[str] = None
    search: str = ""
    sort: str
    order: str
    page: int
    page_size: int


class BrowseResponse(BaseModel):
    success: bool = True
    items: List[BrowseItem]
    meta: PaginationMeta
    options: BrowseOptions
    state: BrowseState


class DocumentPatch(BaseModel):
    """Partial metadata update; only fields that are sent are applied."""
    title: Optional[str] = None
    course_code: Optional[str] = None
    course_number: Optional[str] = None
    course_name: Optional[str] = None
    professor: Optional[str] = None
    date: Optional[str] = Field(None, description="YYYY-MM-DD")

    class Config:
        extra = "forbid"


class DownloadLink(BaseModel):
    url: str
    expires_in: int


class Suggestion(BaseModel):
    field: str
    prefix: str
    suggestion: Optional[str] = None
