"""
Admin console API. Every route requires a bearer token whose user is listed
in the admins table.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.middleware.auth import require_admin
from app.middleware.security import SecurityTracker
from app.obs.logging import get_logger
from app.routes.public import get_security_tracker
from app.schemas.documents import DocumentOut, DocumentPatch, Suggestion
from app.schemas.requests import MaterialRequestOut
from app.schemas.responses import APIResponse
from app.services.admin_documents import AdminDocumentService, DocumentMetadata
from app.services.catalog import CatalogFilters
from app.services.request_intake import RequestIntakeService
from app.services.storage import StorageService, get_storage_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def get_admin_document_service(
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
) -> AdminDocumentService:
    return AdminDocumentService(db=db, storage=storage)


def get_request_admin_service(db: Session = Depends(get_db)) -> RequestIntakeService:
    # Listing and deleting requests never touches CAPTCHA or the limiter
    return RequestIntakeService(db=db, captcha=None, rate_limiter=None, tracker=None)


@router.get("/documents", response_model=APIResponse[List[DocumentOut]])
async def list_documents(
    course_code: Optional[str] = None,
    course_number: Optional[str] = None,
    professor: Optional[str] = None,
    q: Optional[str] = None,
    service: AdminDocumentService = Depends(get_admin_document_service),
):
    rows = service.list(CatalogFilters(
        course_code=course_code or None,
        course_number=course_number or None,
        professor=professor or None,
        q=q or None,
    ))
    return APIResponse(data=[DocumentOut.from_document(r) for r in rows])


@router.post("/documents", response_model=APIResponse[DocumentOut])
async def upload_document(
    request: Request,
    file: Optional[UploadFile] = File(None),
    course_code: str = Form(""),
    course_number: str = Form(""),
    course_name: str = Form(""),
    professor: str = Form(""),
    title: str = Form(""),
    date: str = Form(""),
    service: AdminDocumentService = Depends(get_admin_document_service),
):
    """Multipart upload of one PDF plus its metadata."""
    file_bytes = await file.read() if file is not None else None
    document = await service.upload(
        file_bytes=file_bytes,
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        metadata=DocumentMetadata(
            course_code=course_code,
            course_number=course_number,
            professor=professor,
            date=date,
            title=title,
            course_name=course_name,
        ),
    )
    logger.info(
        "Admin uploaded document",
        extra={'user_id': getattr(request.state, "user_id", None), 'storage_path': document.path},
    )
    return APIResponse(data=DocumentOut.from_document(document), message="Upload successful")


@router.get("/documents/suggest", response_model=APIResponse[Suggestion])
async def suggest_value(
    field: str,
    prefix: str = "",
    service: AdminDocumentService = Depends(get_admin_document_service),
):
    """Autocomplete for the upload form."""
    return APIResponse(data=Suggestion(field=field, prefix=prefix, suggestion=service.suggest(field, prefix)))


@router.patch("/documents/{identifier:path}", response_model=APIResponse[DocumentOut])
async def update_document(
    identifier: str,
    body: DocumentPatch,
    service: AdminDocumentService = Depends(get_admin_document_service),
):
    document = service.patch(identifier, body.model_dump(exclude_unset=True))
    return APIResponse(data=DocumentOut.from_document(document))


@router.delete("/documents/{identifier:path}")
async def delete_document(
    request: Request,
    identifier: str,
    service: AdminDocumentService = Depends(get_admin_document_service),
):
    document = await service.delete(identifier)
    logger.info(
        "Admin deleted document",
        extra={'user_id': getattr(request.state, "user_id", None), 'storage_path': document.path},
    )
    return {"success": True}


@router.get("/requests", response_model=APIResponse[List[MaterialRequestOut]])
async def list_requests(service: RequestIntakeService = Depends(get_request_admin_service)):
    return APIResponse(data=[MaterialRequestOut.from_record(r) for r in service.list_requests()])


@router.delete("/requests/{request_id}")
async def delete_request(request_id: str, service: RequestIntakeService = Depends(get_request_admin_service)):
    service.delete_request(request_id)
    return {"success": True}


@router.get("/security/stats")
async def security_stats(tracker: SecurityTracker = Depends(get_security_tracker)):
    """Security events of the last 24 hours, top offenders and recent events."""
    return tracker.stats()


@router.get("/env-check")
async def env_check():
    """Which configuration values are present. Never returns the values."""
    return {"success": True, "environment": settings.ENVIRONMENT, "present": settings.presence_report()}
