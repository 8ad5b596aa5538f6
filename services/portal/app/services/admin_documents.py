"""
Admin-side document management: upload, patch, delete and autocomplete.

Uploads write the object first and the metadata row second. If the row
insert fails the object is removed again (once, best effort) and the insert
error is what the caller sees.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.term import parse_date
from app.models.document import Document
from app.obs.errors import NotFoundError, StorageError, ValidationFailed
from app.obs.logging import get_logger
from app.obs.metrics import metrics
from app.services.catalog import CatalogFilters, CatalogQueryService
from app.services.storage import StorageService

logger = get_logger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
PATCHABLE_FIELDS = ("title", "course_code", "course_number", "course_name", "professor", "date")
REQUIRED_FIELDS = {
    "course_code": "Course code is required",
    "course_number": "Course number is required",
    "professor": "Professor name is required",
    "date": "Date is required",
}
SUGGESTABLE_FIELDS = ("course_code", "course_number", "course_name", "professor")

_UNSAFE_PATH_CHARS = re.compile(r"[^a-zA-Z0-9\-_ ]")
_WHITESPACE = re.compile(r"\s+")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def sanitize_path_segment(value: str) -> str:
    """Keep [A-Za-z0-9-_ ] only, then turn whitespace runs into single hyphens."""
    return _WHITESPACE.sub("-", _UNSAFE_PATH_CHARS.sub("", value or ""))


def storage_timestamp(now: datetime) -> str:
    """UTC ISO-8601 instant with millisecond precision, ':' and '.' replaced by '-'."""
    iso = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def build_storage_path(course_code: str, course_number: str, professor: str, filename: str, now: datetime) -> str:
    return "/".join([
        sanitize_path_segment(course_code),
        sanitize_path_segment(course_number),
        sanitize_path_segment(professor),
        f"{storage_timestamp(now)}-{sanitize_path_segment(filename)}",
    ])


@dataclass
class DocumentMetadata:
    course_code: str = ""
    course_number: str = ""
    professor: str = ""
    date: str = ""
    title: str = ""
    course_name: str = ""

    def stripped(self) -> "DocumentMetadata":
        return DocumentMetadata(**{k: (v or "").strip() for k, v in self.__dict__.items()})


def _date_errors(value: str, today) -> List[str]:
    if not _ISO_DATE.match(value):
        return ["Date must be in YYYY-MM-DD format"]
    parsed = parse_date(value)
    if parsed is None or parsed.isoformat() != value:
        return ["Date must be a valid calendar date"]
    if parsed > today:
        return ["Cannot upload an exam with a future date"]
    return []


class AdminDocumentService:
    def __init__(
        self,
        db: Session,
        storage: StorageService,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_upload_bytes: Optional[int] = None,
    ):
        self.db = db
        self.storage = storage
        self.clock = clock
        self.max_upload_bytes = max_upload_bytes or settings.MAX_UPLOAD_BYTES
        self.catalog = CatalogQueryService(db)

    def list(self, filters: CatalogFilters) -> List[Document]:
        return self.catalog.list(filters)

    def validate_upload(
        self,
        file_bytes: Optional[bytes],
        content_type: Optional[str],
        metadata: DocumentMetadata,
    ) -> List[str]:
        errors = []
        if not file_bytes:
            errors.append("No file provided")
        elif len(file_bytes) > self.max_upload_bytes:
            errors.append(f"File too large (max {self.max_upload_bytes // (1024 * 1024)} MB)")
        if file_bytes and content_type != PDF_CONTENT_TYPE:
            errors.append("Only PDF files are allowed")

        for name, message in REQUIRED_FIELDS.items():
            if not getattr(metadata, name):
                errors.append(message)

        if metadata.date:
            errors.extend(_date_errors(metadata.date, self.clock().date()))
        return errors

    async def upload(
        self,
        file_bytes: Optional[bytes],
        filename: Optional[str],
        content_type: Optional[str],
        metadata: DocumentMetadata,
    ) -> Document:
        metadata = metadata.stripped()
        errors = self.validate_upload(file_bytes, content_type, metadata)
        if errors:
            metrics.record_document_upload("invalid")
            raise ValidationFailed(errors)

        path = build_storage_path(
            metadata.course_code,
            metadata.course_number,
            metadata.professor,
            filename or "upload.pdf",
            self.clock(),
        )

        await self.storage.upload_file(path, file_bytes, PDF_CONTENT_TYPE)

        document = Document(
            path=path,
            title=metadata.title or None,
            course_code=metadata.course_code,
            course_number=metadata.course_number,
            course_name=metadata.course_name or None,
            professor=metadata.professor,
            date=parse_date(metadata.date),
        )
        try:
            self.db.add(document)
            self.db.commit()
            self.db.refresh(document)
        except SQLAlchemyError as e:
            self.db.rollback()
            message = str(getattr(e, "orig", None) or e)
            logger.error(f"Metadata insert failed, removing uploaded file: {message}", extra={'storage_path': path})
            await self._remove_orphan(path)
            metrics.record_document_upload("error")
            raise StorageError(message)

        metrics.record_document_upload("success")
        logger.info("Document uploaded", extra={'storage_path': path, 'document_id': document.id})
        return document

    async def _remove_orphan(self, path: str):
        try:
            await self.storage.delete_file(path)
        except StorageError as cleanup_error:
            logger.error(
                f"Compensating delete failed, object may be orphaned: {cleanup_error.message}",
                extra={'storage_path': path},
            )

    def resolve(self, identifier: str) -> Document:
        """
        Look a document up by storage path.

        Record ids are still accepted for older console links; that form is
        deprecated and logged whenever it is used.
        """
        document = self.catalog.get_by_path(identifier)
        if document is not None:
            return document

        document = self.catalog.get_by_id(identifier)
        if document is not None:
            logger.warning(
                "Document addressed by record id instead of storage path",
                extra={'document_id': identifier},
            )
            return document

        raise NotFoundError("Document not found")

    def patch(self, identifier: str, fields: Dict[str, Any]) -> Document:
        unknown = sorted(set(fields) - set(PATCHABLE_FIELDS))
        if unknown:
            raise ValidationFailed([f"Field cannot be updated: {name}" for name in unknown])
        if not fields:
            raise ValidationFailed(["No fields to update"])

        document = self.resolve(identifier)

        errors = []
        updates = {}
        for name, value in fields.items():
            value = (value or "").strip() if isinstance(value, str) or value is None else value
            if name in REQUIRED_FIELDS and not value:
                errors.append(REQUIRED_FIELDS[name])
                continue
            if name == "date":
                errors.extend(_date_errors(value, self.clock().date()))
                value = parse_date(value)
            elif not value:
                value = None
            updates[name] = value
        if errors:
            raise ValidationFailed(errors)

        for name, value in updates.items():
            setattr(document, name, value)
        try:
            self.db.commit()
            self.db.refresh(document)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(getattr(e, "orig", None) or e))

        logger.info("Document updated", extra={'storage_path': document.path, 'details': sorted(updates)})
        return document

    async def delete(self, identifier: str) -> Document:
        """Remove the stored object, then the row. A storage failure keeps the row."""
        document = self.resolve(identifier)

        try:
            await self.storage.delete_file(document.path)
        except StorageError:
            metrics.record_document_delete("error")
            raise

        try:
            self.db.delete(document)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            metrics.record_document_delete("error")
            raise StorageError(str(getattr(e, "orig", None) or e))

        metrics.record_document_delete("success")
        logger.info("Document deleted", extra={'storage_path': document.path})
        return document

    def suggest(self, field: str, prefix: str) -> Optional[str]:
        """First catalogued value (newest document first) extending the typed prefix."""
        if field not in SUGGESTABLE_FIELDS:
            raise ValidationFailed([f"Suggestions are not available for {field}"])
        typed = (prefix or "").lower()
        if not typed:
            return None

        column = getattr(Document, field)
        for (value,) in self.db.query(column).order_by(Document.date.desc()):
            candidate = str(value or "")
            if candidate.lower().startswith(typed) and candidate.lower() != typed:
                return candidate
        return None
