"""
Standard API response schemas for consistent client experience.
Errors are not modelled here; they are RFC-7807 problem documents (see app.obs.errors).
"""
from pydantic import BaseModel, Field
from typing import Optional, Generic, TypeVar
from datetime import datetime

T = TypeVar('T')


class APIMetadata(BaseModel):
    """
    Metadata included in API responses.
    Useful for pagination, performance tracking, and debugging.
    """
    request_id: Optional[str] = Field(None, description="Request trace ID for debugging")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Response timestamp")
    version: str = Field(default="v1", description="API version")


class APIResponse(BaseModel, Generic[T]):
    """
    Standard success response wrapper.

    Usage:
        @router.get("/api/public/list")
        async def list_documents(...) -> APIResponse[List[DocumentOut]]:
            rows = CatalogQueryService(db).list(filters)
            return APIResponse(data=[DocumentOut.from_document(r) for r in rows])
    """
    success: bool = Field(True, description="Indicates successful operation")
    data: T = Field(..., description="Response payload")
    meta: Optional[APIMetadata] = Field(None, description="Response metadata")
    message: Optional[str] = Field(None, description="Optional human-readable message")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "data": [{"path": "CS/101/Jane-Doe/2024-03-05T10-20-30-123Z-midtermpdf", "course_code": "CS"}],
                "meta": {
                    "request_id": "req_abc123",
                    "timestamp": "2024-10-09T12:00:00Z",
                    "version": "v1"
                }
            }
        }


class PaginationMeta(BaseModel):
    """Pagination metadata."""
    total: int = Field(..., description="Total number of items after filtering")
    page: int = Field(..., description="Current page number (1-indexed)")
    page_size: int = Field(..., description="Items per page")
    total_pages: int = Field(..., description="Total number of pages")
    start_index: int = Field(..., description="1-based index of the first item shown, 0 when empty")
    end_index: int = Field(..., description="1-based index of the last item shown, 0 when empty")
    has_next: bool = Field(..., description="Whether there is a next page")
    has_prev: bool = Field(..., description="Whether there is a previous page")
