"""
Material-request intake.

Checks run in a fixed order: blacklist pre-check, rate limit, CAPTCHA,
field validation, duplicate window, insert. Rate-limit hits, CAPTCHA
failures and validation errors count towards the auto-blacklist.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.middleware.security import (
    SecurityEventType,
    SecurityTracker,
    enforce_rate_limit,
    perform_security_checks,
)
from app.models.material_request import MaterialRequest
from app.obs.errors import (
    DuplicateRequestError,
    NotFoundError,
    SecurityCheckFailed,
    StorageError,
    ValidationFailed,
)
from app.obs.logging import get_logger
from app.obs.metrics import metrics
from app.services.captcha import TurnstileVerifier

logger = get_logger(__name__)

MAX_COURSE_LENGTH = 50
MAX_EMAIL_LENGTH = 100
MAX_DETAILS_LENGTH = 500

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_HTML_TAG = re.compile(r"<[^>]*>")


@dataclass
class SanitizedRequest:
    course: str
    email: Optional[str]
    details: Optional[str]


def validate_request_data(course, email=None, details=None) -> SanitizedRequest:
    """
    Validate and sanitize a submission, reporting every violated rule at once.
    """
    errors: List[str] = []

    clean_course = None
    if not course or not isinstance(course, str):
        errors.append("Course is required and must be a string")
    else:
        clean_course = course.strip()
        if not clean_course:
            errors.append("Course cannot be empty")
        elif len(clean_course) > MAX_COURSE_LENGTH:
            errors.append(f"Course name must be {MAX_COURSE_LENGTH} characters or less")

    clean_email = None
    if email is not None and not isinstance(email, str):
        errors.append("Email must be a string")
    elif email and email.strip():
        trimmed = email.strip()
        if not _EMAIL.match(trimmed):
            errors.append("Email format is invalid")
        elif len(trimmed) > MAX_EMAIL_LENGTH:
            errors.append(f"Email must be {MAX_EMAIL_LENGTH} characters or less")
        else:
            clean_email = trimmed.lower()

    clean_details = None
    if details is not None and not isinstance(details, str):
        errors.append("Details must be a string")
    elif details and details.strip():
        trimmed = details.strip()
        if len(trimmed) > MAX_DETAILS_LENGTH:
            errors.append(f"Details must be {MAX_DETAILS_LENGTH} characters or less")
        else:
            clean_details = _HTML_TAG.sub("", trimmed) or None

    if errors:
        raise ValidationFailed(errors)

    return SanitizedRequest(course=clean_course, email=clean_email, details=clean_details)


class RequestIntakeService:
    def __init__(
        self,
        db: Session,
        captcha: TurnstileVerifier,
        rate_limiter,
        tracker: SecurityTracker,
        clock: Callable[[], datetime] = datetime.utcnow,
        duplicate_window: Optional[timedelta] = None,
    ):
        self.db = db
        self.captcha = captcha
        self.rate_limiter = rate_limiter
        self.tracker = tracker
        self.clock = clock
        self.duplicate_window = duplicate_window or timedelta(hours=settings.DUPLICATE_WINDOW_HOURS)

    async def submit(
        self,
        course,
        email=None,
        details=None,
        captcha_token: Optional[str] = None,
        identifier: str = "unknown",
        user_agent: Optional[str] = None,
        endpoint: str = "/api/public/request",
    ) -> MaterialRequest:
        perform_security_checks(self.tracker, identifier, endpoint, user_agent)

        enforce_rate_limit(
            self.rate_limiter, self.tracker, identifier,
            scope="request", limit=settings.RATE_LIMIT_REQUEST,
            endpoint=endpoint, user_agent=user_agent,
        )

        if not captcha_token:
            self.tracker.log_event(
                SecurityEventType.CAPTCHA_FAIL, identifier, endpoint,
                user_agent=user_agent, details="Missing CAPTCHA token",
            )
            metrics.record_material_request("rejected")
            raise SecurityCheckFailed("Security verification required")

        if not await self.captcha.verify(captcha_token, identifier):
            self.tracker.log_event(
                SecurityEventType.CAPTCHA_FAIL, identifier, endpoint,
                user_agent=user_agent, details="CAPTCHA verification failed",
            )
            metrics.record_material_request("rejected")
            raise SecurityCheckFailed("Security verification failed")

        try:
            clean = validate_request_data(course, email, details)
        except ValidationFailed as e:
            self.tracker.log_event(
                SecurityEventType.VALIDATION_ERROR, identifier, endpoint,
                user_agent=user_agent, details=e.errors,
            )
            metrics.record_material_request("invalid")
            raise

        now = self.clock()
        if clean.email and self._has_recent_duplicate(clean.course, clean.email, now):
            metrics.record_material_request("duplicate")
            raise DuplicateRequestError(
                "A request for this course was already submitted recently. Please wait 24 hours before resubmitting."
            )

        record = MaterialRequest(
            course=clean.course,
            email=clean.email,
            details=clean.details,
            created_at=now,
        )
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as e:
            self.db.rollback()
            message = str(getattr(e, "orig", None) or e)
            logger.error(f"Failed to store material request: {message}")
            metrics.record_material_request("error")
            raise StorageError(message)

        metrics.record_material_request("accepted")
        logger.info("Material request stored", extra={'request_id': record.id, 'ip': identifier})
        return record

    def _has_recent_duplicate(self, course: str, email: str, now: datetime) -> bool:
        # Best effort: not atomic with the insert that follows
        cutoff = now - self.duplicate_window
        return self.db.query(MaterialRequest.id).filter(
            MaterialRequest.course == course,
            MaterialRequest.email == email,
            MaterialRequest.created_at > cutoff,
        ).first() is not None

    def list_requests(self) -> List[MaterialRequest]:
        return self.db.query(MaterialRequest).order_by(MaterialRequest.created_at.desc()).all()

    def delete_request(self, request_id: str) -> None:
        record = self.db.query(MaterialRequest).filter(MaterialRequest.id == request_id).first()
        if record is None:
            raise NotFoundError(f"Request {request_id} not found")
        try:
            self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(getattr(e, "orig", None) or e))
        logger.info("Material request deleted", extra={'request_id': request_id})
