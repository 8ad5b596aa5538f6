"""
Tests for the public catalog, download and material request endpoints.
"""
import pytest

from app.models.material_request import MaterialRequest
from app.routes.public import download_filename

from conftest import VALID_CAPTCHA


class TestListEndpoint:

    def test_list_newest_first(self, client, catalog):
        response = client.get("/api/public/list")
        assert response.status_code == 200

        body = response.json()
        assert body["success"] is True
        assert [d["title"] for d in body["data"]] == ["Quiz", "Final", "Midterm 1", "Exam"]
        assert body["data"][0]["date"] == "2025-03-03"

    def test_list_with_filters_and_query(self, client, catalog):
        response = client.get("/api/public/list", params={"course_code": "CS", "q": "turing"})
        assert [d["title"] for d in response.json()["data"]] == ["Final"]

    def test_concatenated_course_code(self, client, catalog):
        response = client.get("/api/public/list", params={"q": "cs1113"})
        assert [d["title"] for d in response.json()["data"]] == ["Final", "Midterm 1"]

    def test_empty_catalog(self, client, db_session):
        response = client.get("/api/public/list")
        assert response.status_code == 200
        assert response.json()["data"] == []


class TestBrowseEndpoint:

    def test_default_view(self, client, catalog):
        response = client.get("/api/public/browse")
        assert response.status_code == 200

        body = response.json()
        assert body["meta"]["total"] == 4
        assert body["meta"]["page_size"] == 50
        assert body["options"]["course_codes"] == ["CS", "HIST"]
        assert body["options"]["course_numbers"] == []
        assert body["state"]["sort"] == "course_code"
        assert {item["term"] for item in body["items"]} == {"Fall 2024", "Spring 2025", "Summer 2024"}

    def test_cascading_filters(self, client, catalog):
        response = client.get("/api/public/browse", params={"course_code": "CS", "course_number": "1113"})
        body = response.json()
        assert [item["title"] for item in body["items"]] == ["Final", "Midterm 1"]
        assert body["options"]["course_numbers"] == ["1113", "2334"]
        assert body["options"]["professors"] == ["Alan Turing", "Jane Doe"]

    def test_dependent_filter_without_parent_is_ignored(self, client, catalog):
        response = client.get("/api/public/browse", params={"course_number": "1113", "professor": "Jane Doe"})
        body = response.json()
        assert body["state"]["course_number"] is None
        assert body["state"]["professor"] is None
        assert body["meta"]["total"] == 4

    def test_sort_and_order(self, client, catalog):
        response = client.get("/api/public/browse", params={"sort": "date", "order": "desc"})
        dates = [item["date"] for item in response.json()["items"]]
        assert dates == ["2025-03-03", "2024-12-10", "2024-10-01", "2024-07-15"]

    def test_search_matches_spaced_date(self, client, catalog):
        response = client.get("/api/public/browse", params={"q": "2024 12"})
        assert [item["title"] for item in response.json()["items"]] == ["Final"]

    def test_out_of_range_page_is_clamped(self, client, catalog):
        response = client.get("/api/public/browse", params={"page": "9"})
        body = response.json()
        assert body["state"]["page"] == 1
        assert body["meta"]["has_next"] is False
        assert (body["meta"]["start_index"], body["meta"]["end_index"]) == (1, 4)

    def test_non_numeric_page(self, client, catalog):
        response = client.get("/api/public/browse", params={"page": "abc"})
        assert response.json()["state"]["page"] == 1

    def test_invalid_page_size(self, client, catalog):
        response = client.get("/api/public/browse", params={"page_size": 10})
        assert response.status_code == 400
        assert response.json()["errors"] == ["page_size must be one of 25, 50, 100"]

    def test_invalid_sort_field(self, client, catalog):
        response = client.get("/api/public/browse", params={"sort": "path"})
        assert response.status_code == 422


class TestDownloadEndpoint:

    def test_signed_url(self, client, storage):
        path = "CS/1113/Jane-Doe/2024-10-02T10-00-00-000Z-midtermpdf"
        response = client.get("/api/public/download", params={"path": path})

        assert response.status_code == 200
        assert response.json() == {
            "url": f"https://storage.test/pdfs/{path}?expires=60",
            "expires_in": 60,
        }
        assert storage.presigned == [(path, 60, None)]

    def test_missing_path(self, client):
        response = client.get("/api/public/download")
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing path"

    def test_redirect_variant(self, client, storage):
        path = "HIST/1103/Mary-Beard/2024-07-16T14-45-00-000Z-exampdf"
        response = client.get("/api/public/download", params={"path": path, "redirect": "true"},
                              follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == f"https://storage.test/pdfs/{path}?expires=60"
        assert storage.presigned == [(path, 60, "exam.pdf")]

    def test_download_filename(self):
        assert download_filename("CS/1113/Jane-Doe/2024-10-02T10-00-00-000Z-midtermpdf") == "midterm.pdf"
        assert download_filename("CS/1113/Jane-Doe/notes.pdf") == "notes.pdf"
        assert download_filename("CS/1113/Jane-Doe/2024-10-02T10-00-00-000Z-") == "document.pdf"


def request_payload(**overrides):
    payload = {
        "course": "CS 1113",
        "email": "student@example.edu",
        "details": "Fall 2024 final",
        "captchaToken": VALID_CAPTCHA,
    }
    payload.update(overrides)
    return payload


class TestMaterialRequestEndpoint:

    def test_successful_request(self, client, db_session, turnstile):
        response = client.post("/api/public/request", json=request_payload())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Request submitted successfully"
        assert body["data"]["course"] == "CS 1113"
        assert db_session.query(MaterialRequest).count() == 1
        assert turnstile.calls[0]["remoteip"] == "testclient"

    def test_missing_captcha(self, client, db_session):
        payload = request_payload()
        del payload["captchaToken"]
        response = client.post("/api/public/request", json=payload)

        assert response.status_code == 400
        assert response.json()["detail"] == "Security verification required"
        assert db_session.query(MaterialRequest).count() == 0

    def test_rejected_captcha(self, client):
        response = client.post("/api/public/request", json=request_payload(captchaToken="forged"))
        assert response.status_code == 400
        assert response.json()["detail"] == "Security verification failed"

    def test_validation_errors_listed(self, client):
        response = client.post("/api/public/request", json=request_payload(course="", email="nope"))
        assert response.status_code == 400
        assert response.json()["errors"] == [
            "Course is required and must be a string",
            "Email format is invalid",
        ]

    def test_duplicate_within_a_day(self, client):
        assert client.post("/api/public/request", json=request_payload()).status_code == 200
        response = client.post("/api/public/request", json=request_payload(email="Student@Example.edu"))
        assert response.status_code == 409

    def test_blacklisted_client(self, client, tracker):
        tracker.blacklist.add("testclient", 3600)
        response = client.post("/api/public/request", json=request_payload())
        assert response.status_code == 403
        assert response.json()["detail"] == "IP temporarily blocked due to suspicious activity"

    def test_hourly_limit(self, client):
        for i in range(5):
            assert client.post("/api/public/request", json=request_payload(course=f"CS {1000 + i}")).status_code == 200
        response = client.post("/api/public/request", json=request_payload(course="CS 2000"))
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "3600"


class TestVerifyCaptchaEndpoint:

    def test_valid_token(self, client):
        response = client.post("/api/verify-captcha", json={"token": VALID_CAPTCHA})
        assert response.status_code == 200
        assert response.json() == {"success": True}

    def test_missing_token(self, client):
        response = client.post("/api/verify-captcha", json={})
        assert response.status_code == 400
        assert response.json()["detail"] == "Token is required"

    def test_rejected_token(self, client, tracker):
        response = client.post("/api/verify-captcha", json={"token": "forged"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Verification failed"
        assert tracker.failure_count("testclient") == 1
        assert tracker.stats()["last_24_hours"]["captcha_failures"] == 1


class TestBlacklistedClients:
    """A blacklisted client is turned away before rate limiting or CAPTCHA work."""

    @pytest.mark.parametrize("method,url,kwargs", [
        ("get", "/api/public/list", {}),
        ("get", "/api/public/browse", {}),
        ("post", "/api/verify-captcha", {"json": {"token": VALID_CAPTCHA}}),
    ])
    def test_rejected_with_403(self, client, tracker, turnstile, method, url, kwargs):
        tracker.blacklist.add("testclient", 3600)
        response = getattr(client, method)(url, **kwargs)
        assert response.status_code == 403
        assert response.json()["detail"] == "IP temporarily blocked due to suspicious activity"
        assert turnstile.calls == []

    def test_rejected_captcha_counts_towards_blacklist(self, client, tracker):
        for _ in range(10):
            assert client.post("/api/verify-captcha", json={"token": "forged"}).status_code == 400
        assert tracker.is_blacklisted("testclient")

        assert client.get("/api/public/list").status_code == 403
        assert client.post("/api/verify-captcha", json={"token": VALID_CAPTCHA}).status_code == 403


class TestResponseHeaders:

    def test_security_headers_on_api_routes(self, client, catalog):
        response = client.get("/api/public/list")
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "challenges.cloudflare.com" in response.headers["Content-Security-Policy"]
        assert response.headers["Cache-Control"].startswith("no-store")

    def test_security_headers_on_error_responses(self, client):
        response = client.get("/api/public/download")
        assert response.status_code == 400
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_request_id_is_echoed(self, client):
        response = client.get("/health")
        assert response.headers["X-Request-Id"]
        assert "X-Frame-Options" not in response.headers
