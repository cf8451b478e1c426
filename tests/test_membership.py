"""
Membership API scenarios: submission, admin login, review, listing, stats, export.

Run: python -m pytest tests/ -v
"""
import csv
import io
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from api.config import Settings
from api.errors import StoreError
from api.membership import build_app
from api.router import Request
from api.store import MemoryStore

ADMIN_PASSWORD = "correct horse battery staple"
SESSION_SECRET = "membership-test-secret-" * 3

VALID = {
    "firstName": "Jean",
    "lastName": "Dupont",
    "email": "Jean.Dupont@Example.org",
    "phone": "+33 6 12 34 56 78",
    "title": "PhD student",
    "field": "algebra",
    "motivation": "I want to join the seminar.",
    "newsletter": True,
}


def make_app(store=None, **overrides):
    settings = Settings(**{"admin_password": ADMIN_PASSWORD, "session_secret": SESSION_SECRET, **overrides})
    return build_app(settings, store=store if store is not None else MemoryStore())


def call(app, method, path, body=None, token=None, query=None, headers=None):
    headers = dict(headers or {})
    if token:
        headers["Authorization"] = f"Bearer {token}"
    raw = body if isinstance(body, str) else json.dumps(body) if body is not None else ""
    return app.handle(Request(method=method, path=path, headers=headers, query=query or {}, body=raw))


def payload(resp):
    return json.loads(resp.body)


def login(app):
    resp = call(app, "POST", "/login", {"password": ADMIN_PASSWORD})
    assert resp.status == 200
    return payload(resp)["data"]["token"]


def submit(app, **changes):
    resp = call(app, "POST", "/submit", {**VALID, **changes})
    return resp, payload(resp)


@pytest.fixture
def app():
    return make_app()


@pytest.fixture
def token(app):
    return login(app)


# ═══════════════════════════════════════════════
# 1. SUBMISSION
# ═══════════════════════════════════════════════

class TestSubmit:
    def test_valid_submission_is_retrievable_as_pending(self, app, token):
        resp, body = submit(app)
        assert resp.status == 200
        assert body["success"] is True
        member_id = body["id"]
        assert member_id.startswith("MEM_")

        got = payload(call(app, "GET", f"/member/{member_id}", token=token))
        assert got["success"] is True
        assert got["data"]["status"] == "pending"
        assert got["data"]["email"] == "jean.dupont@example.org"
        assert got["data"]["last_name"] == "DUPONT"
        assert got["data"]["first_name"] == "Jean"
        assert got["data"]["newsletter"] is True
        assert got["data"]["submitted_at"]

    def test_duplicate_email_is_case_insensitive(self, app):
        first, _ = submit(app)
        assert first.status == 200
        second, body = submit(app, email="JEAN.DUPONT@example.ORG")
        assert second.status == 400
        assert body["success"] is False
        assert "already registered" in body["error"]

    @pytest.mark.parametrize("field", ["firstName", "lastName", "email", "phone", "title", "field", "motivation"])
    def test_blank_required_field_is_named(self, app, field):
        resp, body = submit(app, **{field: "   "})
        assert resp.status == 400
        assert body["success"] is False
        assert field in body["error"]

    def test_missing_field_reports_first_in_check_order(self, app):
        data = {k: v for k, v in VALID.items() if k not in ("phone", "lastName")}
        resp = call(app, "POST", "/submit", data)
        assert resp.status == 400
        assert "lastName" in payload(resp)["error"]

    @pytest.mark.parametrize("email", ["jean.example.org", "jean@example", "jean @example.org", "@example.org"])
    def test_malformed_email_rejected(self, app, email):
        resp, body = submit(app, email=email)
        assert resp.status == 400
        assert body["error"] == "Invalid email format"

    def test_invalid_json_body(self, app):
        resp = call(app, "POST", "/submit", "{not json")
        assert resp.status == 400
        assert payload(resp)["error"] == "Invalid JSON"

    def test_client_metadata_recorded(self, app, token):
        resp = call(app, "POST", "/submit", VALID, headers={"x-forwarded-for": "203.0.113.5, 10.0.0.1", "User-Agent": "pytest"})
        member_id = payload(resp)["id"]
        record = payload(call(app, "GET", f"/member/{member_id}", token=token))["data"]
        assert record["ip"] == "203.0.113.5"
        assert record["user_agent"] == "pytest"

    @pytest.mark.parametrize("value,expected", [("on", True), ("true", True), (True, True), ("false", False), (None, False)])
    def test_newsletter_opt_in_from_form_values(self, app, token, value, expected):
        _, body = submit(app, newsletter=value)
        record = payload(call(app, "GET", f"/member/{body['id']}", token=token))["data"]
        assert record["newsletter"] is expected

    def test_notification_failure_keeps_submission(self):
        def broken(*args):
            raise ValueError("Expecting value: line 1 column 1 (char 0)")

        app = make_app(resend_api_key="re_key")
        app.service.notifier.sender = broken
        resp, body = submit(app)
        assert resp.status == 200
        assert body["success"] is True
        assert payload(call(app, "GET", "/members", token=login(app)))["total"] == 1

    def test_optional_fields_sanitized(self, app, token):
        _, body = submit(app, presentation="Hello\x00 world ", city="Lyon")
        record = payload(call(app, "GET", f"/member/{body['id']}", token=token))["data"]
        assert record["presentation"] == "Hello world"
        assert record["city"] == "Lyon"
        assert record["country"] == ""


class TestVerify:
    def test_reports_existing_email(self, app):
        submit(app)
        body = payload(call(app, "POST", "/verify", {"email": "jean.dupont@example.org"}))
        assert body["exists"] is True

    def test_reports_free_email(self, app):
        body = payload(call(app, "POST", "/verify", {"email": "new@example.org"}))
        assert body == {"success": True, "exists": False, "message": "Email available"}

    def test_invalid_email(self, app):
        assert call(app, "POST", "/verify", {"email": "nope"}).status == 400


# ═══════════════════════════════════════════════
# 2. ADMIN AUTHENTICATION
# ═══════════════════════════════════════════════

ADMIN_ROUTES = [
    ("GET", "/members"),
    ("GET", "/member/MEM_1_abcd"),
    ("PUT", "/update/MEM_1_abcd"),
    ("GET", "/stats"),
    ("GET", "/export"),
]


class TestAuth:
    @pytest.mark.parametrize("method,path", ADMIN_ROUTES)
    def test_admin_routes_require_token(self, app, method, path):
        resp = call(app, method, path, {"status": "accepted"})
        assert resp.status == 401
        assert payload(resp)["success"] is False

    @pytest.mark.parametrize("header", ["Bearer nope", "Basic abc", "Bearer ", "token"])
    def test_bad_authorization_header(self, app, header):
        resp = call(app, "GET", "/members", headers={"Authorization": header})
        assert resp.status == 401

    @pytest.mark.parametrize("path", ["/members", "/stats", "/export"])
    def test_valid_token_grants_access(self, app, token, path):
        assert call(app, "GET", path, token=token).status == 200

    def test_wrong_password_issues_no_token(self, app):
        resp = call(app, "POST", "/login", {"password": "guess"})
        body = payload(resp)
        assert resp.status == 401
        assert body["success"] is False
        assert "data" not in body

    def test_login_fails_without_configured_secret(self):
        app = make_app(admin_password="")
        assert call(app, "POST", "/login", {"password": ""}).status == 401
        assert call(app, "POST", "/login", {"password": "anything"}).status == 401

    def test_login_returns_expiry(self, app):
        body = payload(call(app, "POST", "/login", {"password": ADMIN_PASSWORD}))
        assert body["data"]["token"]
        assert body["data"]["expires"]

    def test_memory_sessions(self):
        app = make_app(session_mode="memory")
        token = login(app)
        assert call(app, "GET", "/members", token=token).status == 200

    def test_token_from_other_secret_rejected(self):
        token = login(make_app(session_secret="another-secret-entirely-" * 3))
        assert call(make_app(), "GET", "/members", token=token).status == 401


# ═══════════════════════════════════════════════
# 3. REVIEW
# ═══════════════════════════════════════════════

class TestUpdateStatus:
    def test_invalid_status_rejected_before_lookup(self, app, token):
        resp = call(app, "PUT", "/update/MEM_unknown", {"status": "maybe"}, token=token)
        assert resp.status == 400
        assert payload(resp)["error"] == "Invalid status"

    def test_unknown_id(self, app, token):
        resp = call(app, "PUT", "/update/MEM_unknown", {"status": "accepted"}, token=token)
        assert resp.status == 404

    def test_accept_with_comment(self, app, token):
        _, body = submit(app)
        member_id = body["id"]
        resp = call(app, "PUT", f"/update/{member_id}", {"status": "accepted", "comment": "Welcome"}, token=token)
        assert resp.status == 200
        assert payload(resp)["data"] == {"id": member_id, "status": "accepted"}

        record = payload(call(app, "GET", f"/member/{member_id}", token=token))["data"]
        assert record["status"] == "accepted"
        assert record["admin_comment"] == "Welcome"
        assert record["updated_at"]

    def test_comment_optional(self, app, token):
        _, body = submit(app)
        call(app, "PUT", f"/update/{body['id']}", {"status": "rejected", "comment": "Incomplete"}, token=token)
        call(app, "PUT", f"/update/{body['id']}", {"status": "pending"}, token=token)
        record = payload(call(app, "GET", f"/member/{body['id']}", token=token))["data"]
        assert record["status"] == "pending"
        assert record["admin_comment"] == "Incomplete"

    def test_get_unknown_member(self, app, token):
        resp = call(app, "GET", "/member/MEM_missing", token=token)
        assert resp.status == 404
        assert payload(resp)["error"] == "Member not found"


# ═══════════════════════════════════════════════
# 4. LISTING
# ═══════════════════════════════════════════════

PEOPLE = [
    {"firstName": "Jean", "lastName": "Dupont", "email": "jd@example.org", "field": "algebra"},
    {"firstName": "Marie", "lastName": "Jeannin", "email": "marie@example.org", "field": "geometry"},
    {"firstName": "Paul", "lastName": "Martin", "email": "PJean@example.org", "field": "algebra"},
    {"firstName": "Luc", "lastName": "Bernard", "email": "luc@example.org", "field": "analysis"},
]


@pytest.fixture
def populated(app):
    ids = [submit(app, **person)[1]["id"] for person in PEOPLE]
    return app, ids


class TestList:
    def test_second_page_of_three(self, app, token):
        ids = [submit(app, **person)[1]["id"] for person in PEOPLE[:3]]
        body = payload(call(app, "GET", "/members", token=token, query={"page": "2", "limit": "1"}))
        assert body["total"] == 3
        assert body["pages"] == 3
        assert body["page"] == 2
        assert [m["id"] for m in body["data"]] == [ids[1]]

    def test_search_is_case_insensitive_across_names_and_email(self, populated, token):
        app, ids = populated
        body = payload(call(app, "GET", "/members", token=token, query={"search": "jean"}))
        assert {m["id"] for m in body["data"]} == set(ids[:3])
        assert body["total"] == 3

    def test_field_filter_and_domain_alias(self, populated, token):
        app, ids = populated
        by_field = payload(call(app, "GET", "/members", token=token, query={"field": "algebra"}))
        by_domain = payload(call(app, "GET", "/members", token=token, query={"domain": "algebra"}))
        assert [m["id"] for m in by_field["data"]] == [ids[0], ids[2]]
        assert by_domain["data"] == by_field["data"]

    def test_status_filter_then_search(self, populated, token):
        app, ids = populated
        call(app, "PUT", f"/update/{ids[2]}", {"status": "accepted"}, token=token)
        call(app, "PUT", f"/update/{ids[3]}", {"status": "accepted"}, token=token)
        body = payload(call(app, "GET", "/members", token=token, query={"status": "accepted", "search": "JEAN"}))
        assert [m["id"] for m in body["data"]] == [ids[2]]

    def test_defaults_and_bad_paging_values(self, populated, token):
        app, _ = populated
        body = payload(call(app, "GET", "/members", token=token, query={"page": "abc", "limit": "-4"}))
        assert body["page"] == 1
        assert body["pages"] == 4
        assert len(body["data"]) == 1

    def test_empty_store(self, app, token):
        body = payload(call(app, "GET", "/members", token=token))
        assert body == {"success": True, "total": 0, "page": 1, "pages": 0, "data": []}

    def test_page_past_end_is_empty(self, populated, token):
        app, _ = populated
        body = payload(call(app, "GET", "/members", token=token, query={"page": "9"}))
        assert body["data"] == []
        assert body["total"] == 4


# ═══════════════════════════════════════════════
# 5. STATS & EXPORT
# ═══════════════════════════════════════════════

class TestStats:
    def test_counts(self, populated, token):
        app, ids = populated
        call(app, "PUT", f"/update/{ids[0]}", {"status": "accepted"}, token=token)
        call(app, "PUT", f"/update/{ids[1]}", {"status": "rejected"}, token=token)
        data = payload(call(app, "GET", "/stats", token=token))["data"]
        assert data["total"] == 4
        assert (data["pending"], data["accepted"], data["rejected"]) == (2, 1, 1)
        assert data["by_field"] == {"algebra": 2, "geometry": 1, "analysis": 1}
        assert sum(data["by_month"].values()) == 4
        assert data["newsletter"] == 4


class TestExport:
    def test_csv(self, populated, token):
        app, ids = populated
        resp = call(app, "GET", "/export", token=token, query={"format": "csv"})
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/csv")
        assert "attachment" in resp.headers["Content-Disposition"]
        lines = resp.body.strip().split("\n")
        assert lines[0] == "ID,First name,Last name,Email,Phone,Title,Field,Status,Date"
        assert len(lines) == 5
        assert lines[1].startswith(f'"{ids[0]}","Jean","DUPONT","jd@example.org"')
        rows = list(csv.reader(io.StringIO(resp.body)))
        assert rows[1][7] == "pending"
        assert len(rows[1][8]) == 10

    def test_unsupported_format(self, app, token):
        resp = call(app, "GET", "/export", token=token, query={"format": "xlsx"})
        assert resp.status == 400
        assert payload(resp)["error"] == "Unsupported format"


# ═══════════════════════════════════════════════
# 6. ROUTING, CORS, FAILURES
# ═══════════════════════════════════════════════

class FailingStore(MemoryStore):
    def find_all(self):
        raise StoreError("connection refused: postgres://user:pw@db")

    def find_by_email(self, email):
        raise StoreError("connection refused")


class TestRouting:
    @pytest.mark.parametrize("path", ["/submit", "/members", "/anything/at/all", "/.netlify/functions/membership/stats"])
    def test_options_preflight(self, app, path):
        resp = call(app, "OPTIONS", path)
        assert resp.status == 200
        assert resp.body == ""
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "Authorization" in resp.headers["Access-Control-Allow-Headers"]
        assert "PUT" in resp.headers["Access-Control-Allow-Methods"]

    @pytest.mark.parametrize("path", ["/test", "/test/", "/.netlify/functions/membership/test", "/api/membership/test/"])
    def test_mount_prefix_and_trailing_slash(self, app, path):
        resp = call(app, "GET", path)
        assert resp.status == 200
        assert payload(resp)["success"] is True

    def test_unknown_route(self, app):
        resp = call(app, "GET", "/nowhere")
        assert resp.status == 404
        assert resp.headers["Content-Type"] == "application/json"
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    def test_wrong_method(self, app):
        assert call(app, "GET", "/submit").status == 405
        assert call(app, "DELETE", "/member/MEM_1").status == 405

    def test_store_failure_is_generic(self):
        app = make_app(store=FailingStore())
        resp = call(app, "POST", "/submit", VALID)
        body = payload(resp)
        assert resp.status == 500
        assert body == {"success": False, "error": "Internal server error"}

    def test_store_failure_detail_in_debug(self):
        app = make_app(store=FailingStore(), debug=True)
        token = login(app)
        body = payload(call(app, "GET", "/members", token=token))
        assert body["error"] == "Internal server error"
        assert "connection refused" in body["detail"]

    def test_failure_does_not_poison_later_requests(self, app, token):
        call(app, "POST", "/submit", "[]")
        resp, _ = submit(app)
        assert resp.status == 200
        assert payload(call(app, "GET", "/members", token=token))["total"] == 1
