"""
Tests for material request validation and intake ordering.
"""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.middleware.rate_limiter import FixedWindowRateLimiter
from app.middleware.security import SecurityTracker
from app.models.material_request import MaterialRequest
from app.obs.errors import (
    BlacklistedError,
    DuplicateRequestError,
    NotFoundError,
    RateLimitExceeded,
    SecurityCheckFailed,
    ValidationFailed,
)
from app.services.request_intake import RequestIntakeService, validate_request_data

from conftest import BROWSER_UA, VALID_CAPTCHA, FrozenClock

NOW = datetime(2025, 2, 1, 9, 30)


class TestValidateRequestData:

    def test_valid_submission_is_sanitized(self):
        clean = validate_request_data("  CS 1113 ", " Student@Example.EDU ", "<b>Fall</b> 2024 <script>x</script>final")
        assert clean.course == "CS 1113"
        assert clean.email == "student@example.edu"
        assert clean.details == "Fall 2024 xfinal"

    def test_optional_fields(self):
        clean = validate_request_data("MATH 2924")
        assert clean.email is None
        assert clean.details is None

    def test_all_errors_reported_together(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_request_data("C" * 51, "not-an-email", "d" * 501)
        assert exc_info.value.errors == [
            "Course name must be 50 characters or less",
            "Email format is invalid",
            "Details must be 500 characters or less",
        ]

    @pytest.mark.parametrize("course,message", [
        (None, "Course is required and must be a string"),
        ("", "Course is required and must be a string"),
        (42, "Course is required and must be a string"),
        ("   ", "Course cannot be empty"),
    ])
    def test_course_rules(self, course, message):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_request_data(course)
        assert exc_info.value.errors == [message]

    def test_course_length_is_checked_after_trimming(self):
        assert validate_request_data("  " + "C" * 50 + "  ").course == "C" * 50

    def test_long_email(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_request_data("CS 1113", "a" * 95 + "@x.edu")
        assert exc_info.value.errors == ["Email must be 100 characters or less"]

    def test_non_string_email(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_request_data("CS 1113", 12345)
        assert exc_info.value.errors == ["Email must be a string"]


@pytest.fixture
def intake_clock():
    return FrozenClock()


@pytest.fixture
def intake(db_session, captcha, intake_clock):
    return RequestIntakeService(
        db=db_session,
        captcha=captcha,
        rate_limiter=FixedWindowRateLimiter(clock=intake_clock, rng=lambda: 1.0),
        tracker=SecurityTracker(clock=intake_clock),
        clock=lambda: NOW,
    )


async def submit(service, identifier="203.0.113.7", **fields):
    values = {"course": "CS 1113", "email": "student@example.edu", "details": None, "captcha_token": VALID_CAPTCHA}
    values.update(fields)
    return await service.submit(identifier=identifier, user_agent=BROWSER_UA, **values)


class TestRequestIntake:

    @pytest.mark.asyncio
    async def test_successful_submission(self, intake, db_session, turnstile):
        record = await submit(intake, details="Midterm 2 <i>please</i>")
        assert record.id
        assert record.created_at == NOW

        stored = db_session.query(MaterialRequest).one()
        assert stored.course == "CS 1113"
        assert stored.details == "Midterm 2 please"
        assert turnstile.calls[0]["remoteip"] == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_missing_captcha(self, intake):
        with pytest.raises(SecurityCheckFailed) as exc_info:
            await submit(intake, captcha_token=None)
        assert exc_info.value.message == "Security verification required"
        assert intake.tracker.failure_count("203.0.113.7") == 1

    @pytest.mark.asyncio
    async def test_invalid_captcha(self, intake, db_session):
        with pytest.raises(SecurityCheckFailed) as exc_info:
            await submit(intake, captcha_token="forged")
        assert exc_info.value.message == "Security verification failed"
        assert db_session.query(MaterialRequest).count() == 0

    @pytest.mark.asyncio
    async def test_validation_failure_is_a_security_event(self, intake):
        with pytest.raises(ValidationFailed):
            await submit(intake, course="")
        stats = intake.tracker.stats()["last_24_hours"]
        assert stats["validation_errors"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_within_window(self, intake, db_session):
        db_session.add(MaterialRequest(course="CS 1113", email="student@example.edu", created_at=NOW - timedelta(hours=23)))
        db_session.commit()

        with pytest.raises(DuplicateRequestError):
            await submit(intake, email="STUDENT@example.edu")

    @pytest.mark.asyncio
    async def test_duplicate_window_expires(self, intake, db_session):
        db_session.add(MaterialRequest(course="CS 1113", email="student@example.edu", created_at=NOW - timedelta(hours=25)))
        db_session.commit()

        await submit(intake)
        assert db_session.query(MaterialRequest).count() == 2

    @pytest.mark.asyncio
    async def test_no_duplicate_check_without_email(self, intake, db_session):
        await submit(intake, email=None)
        await submit(intake, email=None)
        assert db_session.query(MaterialRequest).count() == 2

    @pytest.mark.asyncio
    async def test_sixth_request_in_an_hour_is_rate_limited(self, intake):
        for i in range(5):
            await submit(intake, course=f"CS {1000 + i}")
        with pytest.raises(RateLimitExceeded) as exc_info:
            await submit(intake, course="CS 2000")
        assert exc_info.value.extensions["retry_after"] == 3600

    @pytest.mark.asyncio
    async def test_rate_limit_is_checked_before_captcha(self, intake, turnstile):
        for i in range(5):
            await submit(intake, course=f"CS {1000 + i}")
        calls = len(turnstile.calls)
        with pytest.raises(RateLimitExceeded):
            await submit(intake, captcha_token="forged")
        assert len(turnstile.calls) == calls

    @pytest.mark.asyncio
    async def test_blacklisted_client_consumes_no_rate_count(self, intake):
        intake.tracker.blacklist.add("203.0.113.7", 3600)
        with pytest.raises(BlacklistedError):
            await submit(intake)
        assert len(intake.rate_limiter) == 0

    @pytest.mark.asyncio
    async def test_ten_failures_blacklist_the_client(self, intake):
        for _ in range(10):
            # Five CAPTCHA failures, then the hourly limit kicks in
            with pytest.raises((SecurityCheckFailed, RateLimitExceeded)):
                await submit(intake, captcha_token="forged", course="x")
        with pytest.raises(BlacklistedError):
            await submit(intake)


class TestRequestAdministration:

    def test_list_newest_first(self, db_session):
        db_session.add_all([
            MaterialRequest(course="A", created_at=NOW - timedelta(days=2)),
            MaterialRequest(course="B", created_at=NOW),
        ])
        db_session.commit()
        service = RequestIntakeService(db_session, captcha=MagicMock(), rate_limiter=MagicMock(), tracker=MagicMock())
        assert [r.course for r in service.list_requests()] == ["B", "A"]

    def test_delete(self, db_session):
        record = MaterialRequest(course="A", created_at=NOW)
        db_session.add(record)
        db_session.commit()
        service = RequestIntakeService(db_session, captcha=AsyncMock(), rate_limiter=MagicMock(), tracker=MagicMock())

        service.delete_request(record.id)
        assert db_session.query(MaterialRequest).count() == 0

        with pytest.raises(NotFoundError):
            service.delete_request(record.id)
