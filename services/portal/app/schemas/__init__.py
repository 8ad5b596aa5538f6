"""
Pydantic schemas for request/response validation.
"""
from .responses import (
    APIResponse,
    PaginationMeta,
    APIMetadata
)

__all__ = [
    'APIResponse',
    'PaginationMeta',
    'APIMetadata'
]
