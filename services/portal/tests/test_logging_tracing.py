"""
Tests for observability logging, tracing and error rendering.
"""
import json
import logging
import uuid
from io import StringIO
from unittest.mock import Mock, patch

import pytest
from fastapi import HTTPException, Request
from fastapi.testclient import TestClient

from app.main import app
from app.obs.errors import NotFoundError, ProblemDetail, RateLimitExceeded, create_problem_detail, mapping_for
from app.obs.logging import (
    PIIRedactor,
    StructuredFormatter,
    extract_trace_id,
    generate_trace_id,
    log_security_event,
)
from app.obs.sentry import before_send_event, redact_pii
from app.obs.tracing import get_current_trace_id


def capture_logger(name, redact_pii=False):
    log_stream = StringIO()
    handler = logging.StreamHandler(log_stream)
    handler.setFormatter(StructuredFormatter(redact_pii=redact_pii))

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers = [handler]
    logger.propagate = False
    return logger, log_stream


class TestLogging:
    """Test structured logging functionality."""

    def test_generate_trace_id(self):
        trace_id = generate_trace_id()
        assert isinstance(trace_id, str)
        assert len(trace_id) == 36  # UUID4 length
        uuid.UUID(trace_id)

    def test_extract_trace_id_from_header(self):
        request = Mock(spec=Request)
        request.headers = {"X-Request-Id": "test-trace-id-123"}

        assert extract_trace_id(request) == "test-trace-id-123"

    def test_extract_trace_id_from_traceparent(self):
        request = Mock(spec=Request)
        request.headers = {"traceparent": "00-12345678901234567890123456789012-1234567890123456-01"}

        assert extract_trace_id(request) == "12345678901234567890123456789012"

    def test_extract_trace_id_generates_new(self):
        request = Mock(spec=Request)
        request.headers = {}

        trace_id = extract_trace_id(request)
        assert len(trace_id) == 36
        uuid.UUID(trace_id)

    def test_structured_logging_format(self):
        """Logs are JSON with the required fields."""
        logger, log_stream = capture_logger("test_structured_logger")

        logger.info("Document uploaded", extra={
            'service': 'api',
            'route': '/api/admin/documents',
            'method': 'POST',
            'status': 200,
            'trace_id': 'test-trace-id',
            'storage_path': 'CS/1113/Jane-Doe/2025-03-05T10-20-30-123Z-midtermpdf',
        })

        log_data = json.loads(log_stream.getvalue().strip())

        assert 'ts' in log_data
        assert log_data['level'] == 'INFO'
        assert log_data['message'] == 'Document uploaded'
        assert log_data['service'] == 'api'
        assert log_data['route'] == '/api/admin/documents'
        assert log_data['method'] == 'POST'
        assert log_data['status'] == 200
        assert log_data['trace_id'] == 'test-trace-id'
        assert log_data['storage_path'].startswith('CS/1113/')

    def test_email_is_redacted(self):
        logger, log_stream = capture_logger("test_redacting_logger", redact_pii=True)

        logger.info("Request from student@example.edu", extra={'details': "cc admin@example.edu"})

        log_data = json.loads(log_stream.getvalue().strip())
        assert log_data['message'] == "Request from [REDACTED_EMAIL]"
        assert log_data['details'] == "cc [REDACTED_EMAIL]"

    def test_redactor_can_be_disabled(self):
        assert PIIRedactor(enabled=False).redact("student@example.edu") == "student@example.edu"
        assert PIIRedactor().redact("call 405-555-0100") == "call [REDACTED_PHONE]"

    @pytest.mark.parametrize("severity,level", [
        ("high", "ERROR"),
        ("medium", "WARNING"),
        ("low", "INFO"),
    ])
    def test_security_event_levels(self, severity, level):
        logger, log_stream = capture_logger(f"test_security_logger_{severity}")

        log_security_event(logger, "captcha_fail", severity, ip="203.0.113.7", endpoint="/api/public/request")

        log_data = json.loads(log_stream.getvalue().strip())
        assert log_data['level'] == level
        assert log_data['message'] == "Security event: captcha_fail"
        assert log_data['ip'] == "203.0.113.7"
        assert log_data['endpoint'] == "/api/public/request"


class TestTracing:
    """Test distributed tracing functionality."""

    def test_get_current_trace_id_no_span(self):
        assert get_current_trace_id() is None


class TestErrorHandling:
    """Test RFC-7807 error handling."""

    def test_problem_detail_creation(self):
        problem = ProblemDetail(
            type="https://tools.ietf.org/html/rfc7231#section-6.5.1",
            title="Validation Error",
            detail="Validation failed",
            status=400,
            instance="/api/public/request",
            trace_id="test-trace-id",
            errors=["Course cannot be empty"],
        )

        problem_dict = problem.to_dict()

        assert problem_dict['title'] == "Validation Error"
        assert problem_dict['status'] == 400
        assert problem_dict['instance'] == "/api/public/request"
        assert problem_dict['trace_id'] == "test-trace-id"
        assert problem_dict['errors'] == ["Course cannot be empty"]

    def test_create_problem_detail_from_exception(self):
        request = Mock(spec=Request)
        request.url.path = "/api/public/download"
        request.state.trace_id = "test-trace-id"

        problem = create_problem_detail(
            error=ValueError("Missing path"),
            request=request,
            status_code=400,
            error_type="https://tools.ietf.org/html/rfc7231#section-6.5.1",
            title="Validation Error",
        )

        problem_dict = problem.to_dict()
        assert problem_dict['detail'] == "Missing path"
        assert problem_dict['instance'] == "/api/public/download"
        assert problem_dict['trace_id'] == "test-trace-id"

    def test_mapping_follows_class_hierarchy(self):
        class GoneError(NotFoundError):
            pass

        assert mapping_for(GoneError("gone"))["status"] == 404
        assert mapping_for(RateLimitExceeded(retry_after=30))["status"] == 429


class TestSentryScrubbing:

    def test_redact_pii(self):
        text = "lookup failed for student@example.edu with Bearer abc.def.ghi"
        assert redact_pii(text) == "lookup failed for [EMAIL_REDACTED] with Bearer [REDACTED]"

    def test_before_send_redacts_exception_values(self):
        event = {"level": "error", "exception": {"values": [{"value": "duplicate for a@b.edu"}]}}
        with patch("app.obs.sentry.settings") as mock_settings:
            mock_settings.ENVIRONMENT = "production"
            result = before_send_event(event, {})
        assert result["exception"]["values"][0]["value"] == "duplicate for [EMAIL_REDACTED]"

    def test_before_send_drops_non_errors_in_development(self):
        with patch("app.obs.sentry.settings") as mock_settings:
            mock_settings.ENVIRONMENT = "development"
            assert before_send_event({"level": "warning"}, {}) is None


class TestAPIEndpoints:
    """Test API endpoints with observability."""

    def test_health_endpoint_returns_trace_id(self):
        client = TestClient(app)
        response = client.get("/health")

        assert response.status_code == 200
        assert response.headers["X-Request-Id"]

    def test_incoming_request_id_is_echoed(self):
        client = TestClient(app)
        response = client.get("/health", headers={"X-Request-Id": "req-from-frontend"})
        assert response.headers["X-Request-Id"] == "req-from-frontend"

    def test_error_endpoint_returns_rfc7807(self):
        @app.get("/api/test-error")
        async def raise_test_error():
            raise HTTPException(status_code=400, detail="Test error")

        client = TestClient(app)
        response = client.get("/api/test-error")

        assert response.status_code == 400
        response_data = response.json()
        for field in ("type", "title", "detail", "status", "trace_id"):
            assert field in response_data
        assert response_data["detail"] == "Test error"
        assert response_data["trace_id"] == response.headers["X-Request-Id"]

    def test_domain_error_carries_extensions(self):
        @app.get("/api/test-rate-limited")
        async def raise_rate_limited():
            raise RateLimitExceeded(retry_after=120)

        client = TestClient(app)
        response = client.get("/api/test-rate-limited")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "120"
        assert response.json()["retry_after"] == 120
        assert response.json()["title"] == "Too Many Requests"

    def test_trace_id_differs_per_request(self):
        client = TestClient(app)
        trace_id = client.get("/health").headers["X-Request-Id"]
        trace_id2 = client.get("/health").headers["X-Request-Id"]

        assert trace_id != trace_id2
        assert len(trace_id) == 36
