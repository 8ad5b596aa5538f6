"""
Shared fixtures: in-memory database, fake object store, Turnstile over a mock
transport and admin tokens.
"""
import json
import os
import uuid

# Set test environment variables before the application is imported
os.environ.update({
    "ENVIRONMENT": "test",
    "DATABASE_URL": "sqlite://",
    "AUTH_JWT_SECRET": "test-jwt-secret",
    "AUTH_JWT_AUDIENCE": "authenticated",
    "TURNSTILE_SECRET_KEY": "test-turnstile-secret",
    "RATE_LIMIT_BACKEND": "memory",
    "ENABLE_RATE_LIMITING": "true",
    "OBS_REDACT_PII": "true",
    "ALLOWED_ORIGINS": "http://localhost:3000",
})

from datetime import date, datetime

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.database import Base, get_db
from app.middleware.rate_limiter import FixedWindowRateLimiter
from app.middleware.security import SecurityTracker
from app.models.admin import Admin
from app.models.document import Document
from app.obs.errors import StorageError
from app.services.captcha import TurnstileVerifier, get_captcha_verifier
from app.services.storage import get_storage_service

VALID_CAPTCHA = "valid-captcha-token"
BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeStorage:
    """Object store double keeping objects in a dict."""

    is_configured = True

    def __init__(self):
        self.objects = {}
        self.fail_upload = False
        self.fail_delete = False
        self.presigned = []

    async def upload_file(self, path, data, content_type="application/pdf"):
        if self.fail_upload:
            raise StorageError("Failed to upload file: bucket unavailable")
        self.objects[path] = (data, content_type)
        return path

    async def delete_file(self, path):
        if self.fail_delete:
            raise StorageError("Failed to delete file: access denied")
        self.objects.pop(path, None)
        return True

    async def generate_presigned_url(self, path, expires_in=60, download_name=None):
        self.presigned.append((path, expires_in, download_name))
        return f"https://storage.test/pdfs/{path}?expires={expires_in}"

    async def file_exists(self, path):
        return path in self.objects


class TurnstileStub:
    """Answers siteverify calls; only VALID_CAPTCHA succeeds."""

    def __init__(self):
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.calls.append(payload)
        if payload.get("response") == VALID_CAPTCHA:
            return httpx.Response(200, json={"success": True})
        return httpx.Response(200, json={"success": False, "error-codes": ["invalid-input-response"]})


class FrozenClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def db_session():
    """Fresh schema for every test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def turnstile():
    return TurnstileStub()


@pytest.fixture
def captcha(turnstile):
    return TurnstileVerifier(secret_key="test-turnstile-secret", transport=httpx.MockTransport(turnstile))


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def rate_limiter(clock):
    return FixedWindowRateLimiter(clock=clock, rng=lambda: 1.0)


@pytest.fixture
def tracker(clock):
    return SecurityTracker(clock=clock)


@pytest.fixture
def client(db_session, storage, captcha, rate_limiter, tracker):
    """Test client with database, storage and CAPTCHA overrides and fresh abuse-control state."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_service] = lambda: storage
    app.dependency_overrides[get_captcha_verifier] = lambda: captcha
    app.state.rate_limiter = rate_limiter
    app.state.security_tracker = tracker

    yield TestClient(app, headers={"User-Agent": BROWSER_UA})
    app.dependency_overrides.clear()


def make_token(user_id: str = "admin-user-1", secret: str = "test-jwt-secret", **claims) -> str:
    payload = {"sub": user_id, "aud": "authenticated"}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def admin_user(db_session):
    db_session.add(Admin(user_id="admin-user-1"))
    db_session.commit()
    return "admin-user-1"


@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {make_token(admin_user)}"}


def add_document(session, **fields) -> Document:
    values = {
        "path": f"CS/1113/Jane-Doe/2024-01-01T00-00-00-000Z-{uuid.uuid4().hex}pdf",
        "course_code": "CS",
        "course_number": "1113",
        "professor": "Jane Doe",
        "date": date(2024, 10, 1),
    }
    values.update(fields)
    document = Document(**values)
    session.add(document)
    session.commit()
    return document


@pytest.fixture
def catalog(db_session):
    """A small catalog spanning two courses and three terms."""
    return [
        add_document(db_session, path="CS/1113/Jane-Doe/2024-10-02T10-00-00-000Z-midtermpdf", title="Midterm 1",
                     course_name="Intro Programming", date=date(2024, 10, 1)),
        add_document(db_session, path="CS/1113/Alan-Turing/2024-12-11T09-30-00-000Z-finalpdf", title="Final",
                     professor="Alan Turing", course_name="Intro Programming", date=date(2024, 12, 10)),
        add_document(db_session, path="CS/2334/Ada-Lovelace/2025-03-04T08-15-00-000Z-quizpdf", title="Quiz",
                     course_number="2334", professor="Ada Lovelace", date=date(2025, 3, 3)),
        add_document(db_session, path="HIST/1103/Mary-Beard/2024-07-16T14-45-00-000Z-exampdf", title="Exam",
                     course_code="HIST", course_number="1103", professor="Mary Beard",
                     course_name="World History", date=date(2024, 7, 15)),
    ]


@pytest.fixture
def now():
    return datetime(2025, 6, 1, 12, 0, 0)
