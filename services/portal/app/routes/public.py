"""
Public, unauthenticated endpoints: catalog search, browse, download and
material requests.
"""
import re
from dataclasses import replace
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.core.listing import DEFAULT_PAGE_SIZE, PAGE_SIZES, ListingState, SortField, SortOrder, build_listing
from app.database import get_db
from app.middleware.rate_limiter import get_client_ip
from app.middleware.security import SecurityEventType, SecurityTracker, enforce_rate_limit, perform_security_checks
from app.obs.errors import SecurityCheckFailed, ValidationFailed
from app.obs.logging import get_logger
from app.schemas.documents import (
    BrowseItem,
    BrowseOptions,
    BrowseResponse,
    BrowseState,
    DocumentOut,
    DownloadLink,
)
from app.schemas.requests import CaptchaVerifyIn, MaterialRequestIn, MaterialRequestOut
from app.schemas.responses import APIResponse, PaginationMeta
from app.services.captcha import TurnstileVerifier, get_captcha_verifier
from app.services.catalog import CatalogFilters, CatalogQueryService
from app.services.request_intake import RequestIntakeService
from app.services.storage import StorageService, get_storage_service

logger = get_logger(__name__)

router = APIRouter(tags=["public"])

_TIMESTAMP_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z-")


def get_rate_limiter(request: Request):
    return request.app.state.rate_limiter


def get_security_tracker(request: Request) -> SecurityTracker:
    return request.app.state.security_tracker


def get_request_intake_service(
    request: Request,
    db: Session = Depends(get_db),
    captcha: TurnstileVerifier = Depends(get_captcha_verifier),
) -> RequestIntakeService:
    return RequestIntakeService(
        db=db,
        captcha=captcha,
        rate_limiter=get_rate_limiter(request),
        tracker=get_security_tracker(request),
    )


def guard_public_request(request: Request, scope: str, limit: str) -> str:
    """Blacklist and user-agent checks, then the scoped rate limit. Returns the client identifier."""
    identifier = get_client_ip(request)
    tracker = get_security_tracker(request)
    user_agent = request.headers.get("user-agent")
    perform_security_checks(tracker, identifier, request.url.path, user_agent)
    enforce_rate_limit(
        get_rate_limiter(request), tracker, identifier,
        scope=scope, limit=limit,
        endpoint=request.url.path, user_agent=user_agent,
    )
    return identifier


def download_filename(path: str) -> str:
    """Human-friendly attachment name from a storage path's last segment."""
    name = _TIMESTAMP_PREFIX.sub("", path.rsplit("/", 1)[-1]) or "document"
    if name.lower().endswith(".pdf"):
        return name
    if name.lower().endswith("pdf"):
        name = name[:-3]
    return f"{name}.pdf"


@router.get("/api/public/list", response_model=APIResponse[List[DocumentOut]])
async def list_documents(
    request: Request,
    course_code: Optional[str] = None,
    course_number: Optional[str] = None,
    professor: Optional[str] = None,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Catalog search, newest first. Rate limited per client."""
    guard_public_request(request, scope="list", limit=settings.RATE_LIMIT_LIST)

    filters = CatalogFilters(
        course_code=course_code or None,
        course_number=course_number or None,
        professor=professor or None,
        q=q or None,
    )
    rows = CatalogQueryService(db).list(filters)
    return APIResponse(data=[DocumentOut.from_document(r) for r in rows])


@router.get("/api/public/browse", response_model=BrowseResponse)
async def browse_documents(
    request: Request,
    course_code: Optional[str] = None,
    course_number: Optional[str] = None,
    professor: Optional[str] = None,
    q: Optional[str] = None,
    sort: SortField = SortField.COURSE_CODE,
    order: SortOrder = SortOrder.ASC,
    page: str = "1",
    page_size: int = Query(DEFAULT_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    """
    Browse view over the whole catalog: cascading filters, soft text match,
    sort and pagination. The page number is clamped to the pages that exist.
    """
    guard_public_request(request, scope="list", limit=settings.RATE_LIMIT_LIST)

    if page_size not in PAGE_SIZES:
        raise ValidationFailed([f"page_size must be one of {', '.join(str(p) for p in PAGE_SIZES)}"])

    state = (
        ListingState(page_size=page_size)
        .select_course_code(course_code)
        .select_course_number(course_number if course_code else None)
        .select_professor(professor if course_code and course_number else None)
        .with_search(q or "")
        .with_sort(sort)
    )
    state = replace(state, sort_order=order, page=page)

    rows = CatalogQueryService(db).all()
    view = build_listing(rows, state)
    current = view.page

    return BrowseResponse(
        items=[BrowseItem.from_document(r) for r in current.items],
        meta=PaginationMeta(
            total=current.total,
            page=current.page,
            page_size=current.page_size,
            total_pages=current.total_pages,
            start_index=current.start_index,
            end_index=current.end_index,
            has_next=current.page < current.total_pages,
            has_prev=current.page > 1,
        ),
        options=BrowseOptions(
            course_codes=view.course_codes,
            course_numbers=view.course_numbers,
            professors=view.professors,
        ),
        state=BrowseState(
            course_code=view.state.course_code,
            course_number=view.state.course_number,
            professor=view.state.professor,
            search=view.state.search,
            sort=view.state.sort_field.value,
            order=view.state.sort_order.value,
            page=view.state.page,
            page_size=view.state.page_size,
        ),
    )


@router.get("/api/public/download")
async def download_document(
    path: Optional[str] = None,
    redirect: bool = False,
    storage: StorageService = Depends(get_storage_service),
):
    """
    Short-lived signed URL for one stored PDF.

    With redirect=true (or DOWNLOAD_REDIRECT set) the client is sent straight
    to the signed URL and the store is asked to name the attachment.
    """
    if not path:
        raise ValidationFailed(["Missing path"], message="Missing path")

    ttl = settings.SIGNED_URL_TTL_SECONDS
    if redirect or settings.DOWNLOAD_REDIRECT:
        url = await storage.generate_presigned_url(path, expires_in=ttl, download_name=download_filename(path))
        return RedirectResponse(url, status_code=307)

    url = await storage.generate_presigned_url(path, expires_in=ttl)
    return DownloadLink(url=url, expires_in=ttl)


@router.post("/api/public/request", response_model=APIResponse[MaterialRequestOut])
async def submit_material_request(
    request: Request,
    body: MaterialRequestIn,
    service: RequestIntakeService = Depends(get_request_intake_service),
):
    record = await service.submit(
        course=body.course,
        email=body.email,
        details=body.details,
        captcha_token=body.captcha_token,
        identifier=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        endpoint=request.url.path,
    )
    return APIResponse(
        data=MaterialRequestOut.from_record(record),
        message="Request submitted successfully",
    )


@router.post("/api/verify-captcha")
async def verify_captcha(
    request: Request,
    body: CaptchaVerifyIn,
    captcha: TurnstileVerifier = Depends(get_captcha_verifier),
):
    """Standalone Turnstile check for the request form. 10 attempts per minute per client."""
    identifier = guard_public_request(request, scope="captcha", limit=settings.RATE_LIMIT_CAPTCHA)

    if not body.token:
        raise ValidationFailed(["Token is required"], message="Token is required")

    if not await captcha.verify(body.token, identifier):
        get_security_tracker(request).log_event(
            SecurityEventType.CAPTCHA_FAIL, identifier, request.url.path,
            user_agent=request.headers.get("user-agent"), details="CAPTCHA verification failed",
        )
        raise SecurityCheckFailed("Verification failed")
    return {"success": True}
