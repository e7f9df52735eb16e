"""
Tests for request classification and the audit middleware hooks.
"""

import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient

from app.core.middleware import (
    ActorMiddleware,
    AuditMiddleware,
    audit_resource,
    extract_resource_from_path,
    extract_resource_id,
    is_significant_action,
    map_http_method_to_action,
    should_skip_audit,
)
from conftest import audit_rows, token_for


SENSITIVE = ["users", "patients", "appointments", "medical-records", "audit"]
SKIP = ["/health", "/metrics", "/audit"]


class RecordingService:
    """Audit service double that keeps entries in memory."""

    def __init__(self):
        self.entries = []

    def create_audit_log(self, entry):
        self.entries.append(entry)


class TestRequestClassification:
    """Test the pure classification helpers."""

    @pytest.mark.parametrize("method,action", [
        ("POST", "CREATE"),
        ("GET", "READ"),
        ("PUT", "UPDATE"),
        ("patch", "UPDATE"),
        ("DELETE", "DELETE"),
        ("OPTIONS", "OPTIONS"),
    ])
    def test_method_to_action(self, method, action):
        assert map_http_method_to_action(method) == action

    @pytest.mark.parametrize("path,resource", [
        ("/api/v1/appointments/123", "appointments"),
        ("/api/v1/users", "users"),
        ("/api/v1", "v1"),
        ("/health", "health"),
        ("/", "unknown"),
        ("/api/v1/patients?page=2", "patients"),
    ])
    def test_resource_from_path(self, path, resource):
        assert extract_resource_from_path(path) == resource

    def test_resource_id_lookup_order(self):
        assert extract_resource_id({"patient_id": "p1", "id": "x"}) == "x"
        assert extract_resource_id({"appointmentId": 7}) == "7"
        assert extract_resource_id({"slug": "abc"}) is None
        assert extract_resource_id({}) is None

    def test_mutations_always_significant(self):
        assert is_significant_action("DELETE", "anything", SENSITIVE)
        assert is_significant_action("CREATE", "notes", SENSITIVE)

    def test_reads_significant_only_for_sensitive(self):
        assert is_significant_action("READ", "patients", SENSITIVE)
        assert not is_significant_action("READ", "specialties", SENSITIVE)
        assert not is_significant_action("OPTIONS", "patients", SENSITIVE)

    def test_skip_list_is_substring_match(self):
        assert should_skip_audit("/health", SKIP)
        assert should_skip_audit("/api/v1/audit/logs", SKIP)
        assert not should_skip_audit("/api/v1/patients", SKIP)


@pytest.fixture
def recorder():
    return RecordingService()


@pytest.fixture
def pipeline_client(recorder):
    """Small app exercising the middleware in isolation."""
    app = FastAPI()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/api/v1/patients/{id}")
    def read_patient(id: str):
        return {"id": id}

    @app.get("/api/v1/specialties")
    def list_specialties():
        return []

    @app.patch("/api/v1/users/{id}")
    def update_user(id: str, body: dict):
        if body.get("invalid"):
            raise HTTPException(status_code=400, detail="Invalid")
        return {"id": id}

    @app.post(
        "/api/v1/appointments",
        dependencies=[Depends(audit_resource("scheduling", action="BOOK"))],
    )
    def book(body: dict):
        return body

    @app.get(
        "/api/v1/users/export",
        dependencies=[Depends(audit_resource("users", action="EXPORT"))],
    )
    def export_users():
        return []

    @app.delete("/api/v1/health/{id}")
    def delete_health_check(id: str):
        return {"deleted": id}

    @app.post("/api/v1/internal", dependencies=[Depends(audit_resource(skip_audit=True))])
    def internal(body: dict):
        return body

    @app.post("/api/v1/auth/login")
    def login(body: dict):
        if body.get("password") != "right":
            raise HTTPException(status_code=401, detail="Invalid email or password")
        return {"ok": True}

    @app.post("/api/v1/auth/logout")
    def logout():
        return {"ok": True}

    app.add_middleware(AuditMiddleware, audit_service=recorder, skip_paths=SKIP, sensitive_resources=SENSITIVE, enabled=True)
    app.add_middleware(ActorMiddleware)

    with TestClient(app) as c:
        yield c


def actor_headers(user_id="11111111-1111-1111-1111-111111111111", email="dana@example.com"):
    from app.core.security import create_access_token

    token = create_access_token({"sub": user_id, "email": email, "role": "doctor"})
    return {"Authorization": f"Bearer {token}"}


class TestAuditMiddleware:
    """Test the general, modification and authentication hooks."""

    def test_skip_path_produces_nothing(self, pipeline_client, recorder):
        pipeline_client.get("/health")
        assert recorder.entries == []

    def test_skip_path_suppresses_authenticated_mutation(self, pipeline_client, recorder):
        response = pipeline_client.delete("/api/v1/health/1", headers=actor_headers())

        assert response.status_code == 200
        assert recorder.entries == []

    def test_sensitive_read_is_audited(self, pipeline_client, recorder):
        response = pipeline_client.get(
            "/api/v1/patients/9?page=2",
            headers={**actor_headers(), "X-Forwarded-For": "203.0.113.5, 10.0.0.1", "User-Agent": "pytest-agent"},
        )

        assert response.status_code == 200
        assert len(recorder.entries) == 1
        entry = recorder.entries[0]
        assert entry["action"] == "API_READ"
        assert entry["resource"] == "patients"
        assert entry["resource_id"] == "9"
        assert entry["ip_address"] == "203.0.113.5"
        assert entry["user_agent"] == "pytest-agent"
        assert entry["user_email"] == "dana@example.com"
        details = entry["new_values"]
        assert details["method"] == "GET"
        assert details["path"] == "/api/v1/patients/9"
        assert details["query"] == {"page": "2"}
        assert details["params"] == {"id": "9"}
        assert details["timestamp"].endswith("Z")
        assert details["responseTime"] >= 0

    def test_non_sensitive_read_is_not_audited(self, pipeline_client, recorder):
        pipeline_client.get("/api/v1/specialties", headers=actor_headers())
        assert recorder.entries == []

    def test_anonymous_read_has_no_actor(self, pipeline_client, recorder):
        pipeline_client.get("/api/v1/patients/9", headers={"X-Real-IP": "198.51.100.2"})

        entry = recorder.entries[0]
        assert entry["user_id"] is None
        assert entry["ip_address"] == "198.51.100.2"

    def test_non_ip_client_is_recorded_without_ip(self, pipeline_client, recorder):
        pipeline_client.get("/api/v1/patients/9")
        assert recorder.entries[0]["ip_address"] is None

    def test_successful_update_produces_two_entries(self, pipeline_client, recorder):
        response = pipeline_client.patch(
            "/api/v1/users/42",
            json={"first_name": "New", "password": "hunter22"},
            headers=actor_headers(),
        )

        assert response.status_code == 200
        actions = [entry["action"] for entry in recorder.entries]
        assert actions == ["API_UPDATE", "UPDATE"]

        modification = recorder.entries[1]
        assert modification["resource"] == "users"
        assert modification["resource_id"] == "42"
        assert modification["user_id"] == "11111111-1111-1111-1111-111111111111"
        assert modification["old_values"] is None
        assert modification["new_values"]["first_name"] == "New"
        assert modification["new_values"]["password"] == "********"

    def test_failed_update_only_produces_general_entry(self, pipeline_client, recorder):
        response = pipeline_client.patch(
            "/api/v1/users/42",
            json={"invalid": True},
            headers=actor_headers(),
        )

        assert response.status_code == 400
        assert [entry["action"] for entry in recorder.entries] == ["API_UPDATE"]

    def test_anonymous_update_has_no_modification_entry(self, pipeline_client, recorder):
        pipeline_client.patch("/api/v1/users/42", json={"first_name": "X"})
        assert [entry["action"] for entry in recorder.entries] == ["API_UPDATE"]

    def test_annotation_overrides_inference(self, pipeline_client, recorder):
        pipeline_client.post("/api/v1/appointments", json={"slot": "09:00"}, headers=actor_headers())

        # The general entry keeps the method action; the annotated action names the modification
        assert [entry["action"] for entry in recorder.entries] == ["API_CREATE", "BOOK"]
        assert all(entry["resource"] == "scheduling" for entry in recorder.entries)

    def test_annotated_sensitive_read_is_audited(self, pipeline_client, recorder):
        response = pipeline_client.get("/api/v1/users/export", headers=actor_headers())

        assert response.status_code == 200
        assert [entry["action"] for entry in recorder.entries] == ["API_READ"]
        assert recorder.entries[0]["resource"] == "users"

    def test_skip_annotation_suppresses_entries(self, pipeline_client, recorder):
        pipeline_client.post("/api/v1/internal", json={"a": 1}, headers=actor_headers())
        assert recorder.entries == []

    def test_failed_login_produces_single_entry(self, pipeline_client, recorder):
        response = pipeline_client.post(
            "/api/v1/auth/login",
            json={"email": "dana@example.com", "password": "wrong"},
        )

        assert response.status_code == 401
        login_entries = [e for e in recorder.entries if e["resource"] == "authentication"]
        assert len(login_entries) == 1
        entry = login_entries[0]
        assert entry["action"] == "LOGIN_FAILED"
        assert entry["user_id"] is None
        assert entry["user_email"] == "dana@example.com"
        assert entry["new_values"] == {"success": False, "statusCode": 401}

    def test_successful_login(self, pipeline_client, recorder):
        pipeline_client.post(
            "/api/v1/auth/login",
            json={"email": "dana@example.com", "password": "right"},
        )

        login_entries = [e for e in recorder.entries if e["resource"] == "authentication"]
        assert [e["action"] for e in login_entries] == ["LOGIN"]
        assert login_entries[0]["new_values"]["success"] is True

    def test_login_with_malformed_email_keeps_attempt(self, pipeline_client, recorder):
        pipeline_client.post("/api/v1/auth/login", json={"email": "not-an-email", "password": "x"})

        entry = [e for e in recorder.entries if e["resource"] == "authentication"][0]
        assert entry["user_email"] is None
        assert entry["new_values"]["attemptedEmail"] == "not-an-email"

    def test_logout_is_attributed(self, pipeline_client, recorder):
        pipeline_client.post("/api/v1/auth/logout", headers=actor_headers())

        entry = [e for e in recorder.entries if e["action"] == "LOGOUT"][0]
        assert entry["user_email"] == "dana@example.com"
        assert entry["user_id"] == "11111111-1111-1111-1111-111111111111"

    def test_invalid_token_is_treated_as_anonymous(self, pipeline_client, recorder):
        response = pipeline_client.get(
            "/api/v1/patients/1",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 200
        assert recorder.entries[0]["user_id"] is None

    def test_disabled_middleware_records_nothing(self, recorder):
        app = FastAPI()

        @app.delete("/api/v1/patients/{id}")
        def delete_patient(id: str):
            return {"deleted": id}

        app.add_middleware(AuditMiddleware, audit_service=recorder, enabled=False)

        with TestClient(app) as c:
            assert c.delete("/api/v1/patients/3").status_code == 200
        assert recorder.entries == []


class TestAuditPipelineEndToEnd:
    """Test entries reach the database through the real application."""

    def test_login_writes_login_entry(self, client, db, test_user):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": "doctor@example.com", "password": "doctorpass123"},
        )

        assert response.status_code == 200
        rows = audit_rows(db, resource="authentication")
        assert [row.action for row in rows] == ["LOGIN"]
        assert rows[0].user_id == test_user.user_id
        assert rows[0].new_values == {"success": True, "statusCode": 200}

    def test_failed_login_writes_single_entry(self, client, db, test_user):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": "doctor@example.com", "password": "wrong"},
        )

        assert response.status_code == 401
        rows = audit_rows(db)
        assert [row.action for row in rows] == ["LOGIN_FAILED"]
        assert rows[0].user_id is None

    def test_admin_update_captures_before_snapshot(self, client, db, test_admin, test_user):
        response = client.patch(
            f"/api/v1/users/{test_user.user_id}",
            json={"status": "suspended"},
            headers={"Authorization": f"Bearer {token_for(test_admin)}"},
        )

        assert response.status_code == 200
        rows = audit_rows(db, action="UPDATE")
        assert len(rows) == 1
        assert rows[0].resource == "users"
        assert rows[0].resource_id == str(test_user.user_id)
        assert rows[0].old_values == {"status": "active"}
        assert rows[0].new_values == {"status": "suspended"}
        assert rows[0].user_id == test_admin.user_id

    def test_audit_endpoints_are_not_audited(self, client, db, admin_headers):
        client.get("/api/v1/audit/logs", headers=admin_headers)
        assert audit_rows(db) == []
