"""
HTTP tests for the lifecycle API.

The app is built with its settings and document store overridden, so
every request runs against a fresh in-memory store.
"""

import pytest
from fastapi.testclient import TestClient

from checkins.api.dependencies import get_document_store
from checkins.config.settings import Settings, get_settings
from checkins.main import create_app


API_KEY = "test-key"
HEADERS = {"X-API-Key": API_KEY}


@pytest.fixture
def client(store):
    settings = Settings(api_keys=API_KEY, snowflake_mock_mode=True, _env_file=None)
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_document_store] = lambda: store
    return TestClient(app)


def enroll(client, **overrides):
    body = {
        "client_id": "client-1",
        "form_id": "form-1",
        "coach_id": "coach-1",
        "start_date": "2026-01-01",
        "first_check_in_date": "2026-01-05",
        "duration": 4,
    }
    body.update(overrides)
    return client.post("/api/v1/series", json=body, headers=HEADERS)


class TestHealth:
    
    def test_liveness(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
    
    def test_readiness_in_mock_mode(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"


class TestAuthentication:
    
    def test_missing_api_key_is_forbidden(self, client):
        response = client.get("/api/v1/maintenance/audit")
        assert response.status_code == 403
    
    def test_wrong_api_key_is_forbidden(self, client):
        response = client.get("/api/v1/maintenance/audit", headers={"X-API-Key": "nope"})
        assert response.status_code == 403


class TestSeriesEndpoints:
    
    def test_create_series_returns_anchor(self, client):
        response = enroll(client)
        
        assert response.status_code == 201
        body = response.json()
        assert body["sequence_number"] == 1
        assert body["due_at"] == "2026-01-05T09:00:00"
        assert body["status"] == "pending"
    
    def test_invalid_schedule_is_bad_request(self, client):
        response = enroll(client, frequency="monthly")
        assert response.status_code == 400
    
    def test_duplicate_enrollment_is_rejected(self, client):
        enroll(client)
        assert enroll(client).status_code == 400
    
    def test_list_precreated_series(self, client):
        enroll(client, precreate=True)
        
        response = client.get("/api/v1/series/client-1/form-1", headers=HEADERS)
        
        assert response.status_code == 200
        slots = response.json()["slots"]
        assert [s["sequence_number"] for s in slots] == [1, 2, 3, 4]
        assert slots[3]["due_at"] == "2026-01-26T09:00:00"
    
    def test_unknown_series_is_not_found(self, client):
        response = client.get("/api/v1/series/nobody/form-1", headers=HEADERS)
        assert response.status_code == 404
    
    def test_advance_until_duration(self, client):
        enroll(client, duration=2)
        
        first = client.post("/api/v1/series/client-1/form-1/advance", headers=HEADERS)
        second = client.post("/api/v1/series/client-1/form-1/advance", headers=HEADERS)
        
        assert first.status_code == 201
        assert first.json()["sequence_number"] == 2
        assert first.json()["due_at"] == "2026-01-12T09:00:00"
        assert second.status_code == 400


class TestResponseEndpoints:
    
    def submit(self, client, **overrides):
        body = {"client_id": "client-1", "form_id": "form-1", "sequence_number": 1, "score": 8}
        body.update(overrides)
        return client.post("/api/v1/responses", json=body, headers=HEADERS)
    
    def test_submit_links_response(self, client):
        enroll(client)
        
        response = self.submit(client)
        
        assert response.status_code == 201
        body = response.json()
        assert body["slot"]["status"] == "completed"
        assert body["slot"]["linked_response_id"] == body["response"]["response_id"]
        assert body["response"]["linked_slot_id"] == body["slot"]["slot_id"]
    
    def test_second_submit_conflicts(self, client):
        slot_id = enroll(client).json()["slot_id"]
        first = self.submit(client, slot_id=slot_id, sequence_number=None)
        
        second = self.submit(client, slot_id=slot_id, sequence_number=None, score=3)
        
        assert second.status_code == 409
        detail = second.json()["detail"]
        assert detail["error"] == "already_completed"
        assert detail["linked_response_id"] == first.json()["response"]["response_id"]
    
    def test_submit_without_slot_is_not_found(self, client):
        response = self.submit(client)
        assert response.status_code == 404
    
    def test_reassign_moves_response(self, client):
        enroll(client, precreate=True)
        response_id = self.submit(client).json()["response"]["response_id"]
        
        moved = client.post(
            f"/api/v1/responses/{response_id}/reassign",
            json={"client_id": "client-1", "target_sequence": 2},
            headers=HEADERS,
        )
        
        assert moved.status_code == 200
        assert moved.json()["slot"]["sequence_number"] == 2
        assert moved.json()["response"]["sequence_number"] == 2


class TestMaintenanceEndpoints:
    
    def test_audit_repair_cycle(self, client, seed_slot, seed_response):
        """Audit finds the orphan, dry run plans, execute fixes, audit is clean."""
        seed_slot("slot-1")
        seed_response("resp-1", "X")
        
        audit = client.get("/api/v1/maintenance/audit", params={"client_id": "client-1"}, headers=HEADERS)
        assert audit.json()["counts_by_kind"] == {"orphan_response": 1}
        
        planned = client.post("/api/v1/maintenance/repair", json={"client_id": "client-1"}, headers=HEADERS)
        assert planned.json()["dry_run"] is True
        assert planned.json()["planned"] == 1
        
        applied = client.post(
            "/api/v1/maintenance/repair",
            json={"client_id": "client-1", "dry_run": False},
            headers=HEADERS,
        )
        assert applied.json()["applied"] == 1
        
        again = client.get("/api/v1/maintenance/audit", headers=HEADERS)
        assert again.json()["is_clean"] is True
    
    def test_align_to_target_date(self, client):
        enroll(client, precreate=True)
        
        response = client.post(
            "/api/v1/maintenance/align",
            json={"client_id": "client-1", "form_id": "form-1", "target_date": "2026-01-12"},
            headers=HEADERS,
        )
        
        assert response.status_code == 200
        body = response.json()
        assert body["offset_days"] == 7
        assert body["new_anchor_due_at"] == "2026-01-12T09:00:00"
        assert len(body["updated_slot_ids"]) == 4
    
    def test_align_requires_one_reference(self, client):
        enroll(client)
        
        response = client.post(
            "/api/v1/maintenance/align",
            json={"client_id": "client-1", "form_id": "form-1"},
            headers=HEADERS,
        )
        
        assert response.status_code == 400
    
    def test_align_bulk_reports_failures(self, client):
        enroll(client)
        enroll(client, client_id="client-ref", first_check_in_date="2026-01-12")
        
        response = client.post(
            "/api/v1/maintenance/align-bulk",
            json={
                "client_ids": ["client-1", "client-missing"],
                "form_id": "form-1",
                "reference_client_id": "client-ref",
            },
            headers=HEADERS,
        )
        
        body = response.json()
        assert response.status_code == 200
        assert body["success"] is False
        assert body["results"][0]["offset_days"] == 7
        assert list(body["failures"]) == ["client-missing"]
