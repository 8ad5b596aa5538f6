"""
Catalog query service: exact-match filters plus the normalized free-text query.
"""
import time
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import String, cast, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.query_normalizer import NormalizedQuery, is_course_code_pattern, normalize_query
from app.models.document import Document
from app.obs.errors import StorageError
from app.obs.logging import get_logger
from app.obs.metrics import metrics

logger = get_logger(__name__)

SEARCHABLE_COLUMNS = (
    Document.title,
    Document.professor,
    Document.course_name,
    Document.course_code,
    Document.course_number,
    Document.path,
)


@dataclass
class CatalogFilters:
    course_code: Optional[str] = None
    course_number: Optional[str] = None
    professor: Optional[str] = None
    q: Optional[str] = None


def _like(pattern: str) -> str:
    escaped = pattern.replace("\\", "\\\\").replace("_", "\\_")
    return f"%{escaped}%"


def search_conditions(normalized: NormalizedQuery):
    """OR-group over every searchable column for every pattern."""
    conditions = []
    for pattern in sorted(normalized.patterns):
        like = _like(pattern)
        conditions.extend(column.ilike(like, escape="\\") for column in SEARCHABLE_COLUMNS)
        if is_course_code_pattern(pattern):
            joined = func.lower(Document.course_code).concat(Document.course_number)
            conditions.append(joined.ilike(like, escape="\\"))
    return conditions


class CatalogQueryService:
    def __init__(self, db: Session):
        self.db = db

    def list(self, filters: CatalogFilters) -> List[Document]:
        """
        All matching documents, newest first. No pagination at this layer.

        A term reference in the query ("fall 2024") is ANDed as a
        case-insensitive substring match on the date text.
        """
        start_time = time.time()
        query = self.db.query(Document)

        if filters.course_code:
            query = query.filter(Document.course_code == filters.course_code)
        if filters.course_number:
            query = query.filter(Document.course_number == filters.course_number)
        if filters.professor:
            query = query.filter(Document.professor == filters.professor)

        normalized = normalize_query(filters.q)
        if normalized.term:
            query = query.filter(cast(Document.date, String).ilike(_like(normalized.term), escape="\\"))

        conditions = search_conditions(normalized)
        if conditions:
            query = query.filter(or_(*conditions))

        try:
            rows = query.order_by(Document.date.desc()).all()
        except SQLAlchemyError as e:
            message = str(getattr(e, "orig", None) or e)
            logger.error(f"Catalog query failed: {message}")
            raise StorageError(message)

        metrics.record_catalog_search(
            has_query=bool(normalized.patterns),
            has_term=normalized.term is not None,
            duration_ms=(time.time() - start_time) * 1000,
        )
        return rows

    def all(self) -> List[Document]:
        return self.list(CatalogFilters())

    def get_by_path(self, path: str) -> Optional[Document]:
        return self.db.query(Document).filter(Document.path == path).first()

    def get_by_id(self, document_id: str) -> Optional[Document]:
        return self.db.query(Document).filter(Document.id == document_id).first()
