"""Tests for the lead distribution HTTP API."""

import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from leadflow.api.config import reset_settings
from leadflow.api.dependencies import services_for
from leadflow.api.main import create_app
from leadflow.core.config import DistributionConfig

SECRET = "test-secret"
AUTH = {"X-Leadflow-Secret": SECRET}


@pytest.fixture
def app(monkeypatch, temp_dir):
    monkeypatch.setenv("LEADFLOW_API_SECRET", SECRET)
    reset_settings()
    app = create_app(db_path=str(temp_dir / "api.db"), distribution_config=DistributionConfig())
    yield app
    reset_settings()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def services(app):
    return services_for(app)


@pytest.fixture
def queued(client, services):
    """Two queued realtors: ana then bruno."""
    for realtor_id in ("ana", "bruno"):
        services.db.add_realtor(realtor_id.title(), realtor_id=realtor_id)
        response = client.post("/v1/queue/join", json={"realtor_id": realtor_id}, headers=AUTH)
        assert response.status_code == 200
    return ["ana", "bruno"]


def create_lead(client, **fields):
    response = client.post("/v1/leads", json=fields, headers=AUTH)
    assert response.status_code == 200
    return response.json()["lead"]


class TestHealth:
    """Health and readiness endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        assert client.get("/ready").json() == {"status": "ready"}


class TestAuth:
    """Shared secret and HMAC authentication."""

    def test_missing_credentials(self, client):
        response = client.post("/v1/queue/join", json={"realtor_id": "ana"})

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "auth_error"

    def test_wrong_secret(self, client):
        response = client.post("/v1/jobs/cleanup", headers={"X-Leadflow-Secret": "nope"})
        assert response.status_code == 401

    def test_hmac_signature(self, client, services):
        services.db.add_realtor("Ana", realtor_id="ana")
        body = json.dumps({"realtor_id": "ana"}).encode()
        signature = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()

        response = client.post(
            "/v1/queue/join",
            content=body,
            headers={"X-Leadflow-Signature": signature, "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["queue"]["position"] == 1

    def test_reads_are_public(self, client, queued):
        assert client.get("/v1/queue").status_code == 200


class TestQueueRoutes:
    """Queue endpoints."""

    def test_list_in_order(self, client, queued):
        entries = client.get("/v1/queue").json()
        assert [e["realtor_id"] for e in entries] == ["ana", "bruno"]

    def test_join_unknown_realtor(self, client):
        response = client.post("/v1/queue/join", json={"realtor_id": "ghost"}, headers=AUTH)

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_move(self, client, queued):
        ana = client.get("/v1/queue/ana").json()

        response = client.post("/v1/queue/move", json={"queue_id": ana["id"], "direction": "down"}, headers=AUTH)

        assert response.status_code == 200
        assert [e["realtor_id"] for e in client.get("/v1/queue").json()] == ["bruno", "ana"]

    def test_invalid_move(self, client, queued):
        ana = client.get("/v1/queue/ana").json()

        response = client.post("/v1/queue/move", json={"queue_id": ana["id"], "direction": "up"}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation_error"

    def test_set_score_and_history(self, client, queued):
        response = client.post("/v1/queue/bruno/score", json={"score": 40}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["queue"]["score"] == 40
        history = client.get("/v1/queue/bruno/history").json()
        assert history[0]["action"] == "ADMIN_MANUAL_SCORE_ADJUST"

    def test_leave(self, client, queued):
        assert client.delete("/v1/queue/ana", headers=AUTH).status_code == 200
        assert client.get("/v1/queue/ana").status_code == 404
        assert client.delete("/v1/queue/ana", headers=AUTH).status_code == 404


class TestLeadRoutes:
    """Lead lifecycle over HTTP."""

    def test_create_distributes(self, client, queued):
        lead = create_lead(client, contact_name="Maria")

        assert lead["status"] == "RESERVED"
        assert lead["realtor_id"] == "ana"

    def test_create_without_distribution(self, client, queued):
        lead = create_lead(client, contact_name="Maria", distribute=False)
        assert lead["status"] == "PENDING"

    def test_accept_conflict_during_reservation(self, client, queued):
        lead = create_lead(client)

        response = client.post(f"/v1/leads/{lead['id']}/accept", json={"realtor_id": "bruno"}, headers=AUTH)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "conflict"

    def test_accept(self, client, queued):
        lead = create_lead(client)

        response = client.post(f"/v1/leads/{lead['id']}/accept", json={"realtor_id": "ana"}, headers=AUTH)

        body = response.json()
        assert response.status_code == 200
        assert body["lead"]["status"] == "ACCEPTED"
        assert body["points_earned"] == 5
        assert [lead["id"] for lead in client.get("/v1/realtors/ana/leads").json()] == [body["lead"]["id"]]

    def test_realtor_stats(self, client, queued):
        lead = create_lead(client)
        client.post(f"/v1/leads/{lead['id']}/accept", json={"realtor_id": "ana"}, headers=AUTH)

        response = client.get("/v1/realtors/ana/stats")

        assert response.status_code == 200
        assert response.json()["leads_accepted"] == 1
        assert response.json()["leads_rejected"] == 0
        assert client.get("/v1/realtors/ghost/stats").status_code == 404

    def test_unknown_lead(self, client, queued):
        response = client.post("/v1/leads/missing/accept", json={"realtor_id": "ana"}, headers=AUTH)
        assert response.status_code == 404

    def test_reject_moves_to_next(self, client, queued):
        lead = create_lead(client)

        response = client.post(f"/v1/leads/{lead['id']}/reject", json={"realtor_id": "ana"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["lead"]["realtor_id"] == "bruno"

    def test_mural_and_candidature(self, client, services):
        services.db.add_realtor("Ana", realtor_id="ana")
        lead = create_lead(client)
        assert lead["status"] == "AVAILABLE"

        mural = client.get("/v1/leads/available").json()
        assert [item["id"] for item in mural] == [lead["id"]]

        first = client.post(f"/v1/leads/{lead['id']}/candidates", json={"realtor_id": "ana"}, headers=AUTH)
        assert first.status_code == 404  # ana is not queued

        client.post("/v1/queue/join", json={"realtor_id": "ana"}, headers=AUTH)
        first = client.post(f"/v1/leads/{lead['id']}/candidates", json={"realtor_id": "ana"}, headers=AUTH)
        again = client.post(f"/v1/leads/{lead['id']}/candidates", json={"realtor_id": "ana"}, headers=AUTH)
        assert first.status_code == 200
        assert again.status_code == 409

    def test_invalid_rating(self, client, queued):
        lead = create_lead(client)

        response = client.post(f"/v1/leads/{lead['id']}/rating", json={"rating": 9}, headers=AUTH)

        assert response.status_code == 400

    def test_events_timeline(self, client, queued):
        lead = create_lead(client)

        events = client.get(f"/v1/leads/{lead['id']}/events").json()

        assert {e["type"] for e in events} == {"LEAD_CREATED", "LEAD_DISTRIBUTED"}

    def test_pipeline_forbidden_for_other_realtor(self, client, queued):
        lead = create_lead(client)
        client.post(f"/v1/leads/{lead['id']}/accept", json={"realtor_id": "ana"}, headers=AUTH)

        response = client.patch(
            f"/v1/leads/{lead['id']}/pipeline",
            json={"stage": "PROPOSAL", "actor_id": "bruno"},
            headers=AUTH,
        )

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "forbidden"


class TestVisitRoutes:
    """Owner approval over HTTP."""

    def test_request_and_approve(self, client, services, queued):
        services.db.add_realtor("Olivia", role="OWNER", realtor_id="olivia")
        prop = services.db.add_property("Apartamento", owner_id="olivia")
        lead = create_lead(client, property_id=prop.id, visit_date="2099-05-01", visit_time="09:00")
        client.post(f"/v1/leads/{lead['id']}/accept", json={"realtor_id": "ana"}, headers=AUTH)

        requested = client.post(f"/v1/leads/{lead['id']}/visit/request", json={}, headers=AUTH)
        assert requested.json()["lead"]["status"] == "WAITING_OWNER_APPROVAL"
        assert len(client.get("/v1/realtors/olivia/visits/pending").json()) == 1

        denied = client.post(f"/v1/leads/{lead['id']}/visit/approve", json={"owner_id": "ana"}, headers=AUTH)
        assert denied.status_code == 403

        approved = client.post(f"/v1/leads/{lead['id']}/visit/approve", json={"owner_id": "olivia"}, headers=AUTH)
        assert approved.json()["lead"]["status"] == "CONFIRMED"
        assert len(client.get("/v1/realtors/olivia/visits/confirmed").json()) == 1


class TestTeamRoutes:
    """Team settings endpoints."""

    def test_unknown_team(self, client):
        assert client.get("/v1/teams/nope/settings").status_code == 404

    def test_update_settings(self, client, services):
        services.db.add_realtor("Ana", realtor_id="ana")
        services.db.add_realtor("Bruno", realtor_id="bruno")
        services.db.add_team("Equipe", owner_id="ana", team_id="t1")

        forbidden = client.put(
            "/v1/teams/t1/settings",
            json={"actor_id": "bruno", "lead_distribution_mode": "MANUAL"},
            headers=AUTH,
        )
        updated = client.put(
            "/v1/teams/t1/settings",
            json={"actor_id": "ana", "lead_distribution_mode": "MANUAL", "lead_reservation_minutes": 30},
            headers=AUTH,
        )

        assert forbidden.status_code == 403
        assert updated.status_code == 200
        assert client.get("/v1/teams/t1/settings").json() == {
            "lead_distribution_mode": "MANUAL",
            "lead_reservation_minutes": 30,
            "lead_max_redistribution_attempts": None,
        }

    def test_out_of_range_settings(self, client, services):
        services.db.add_realtor("Ana", realtor_id="ana")
        services.db.add_team("Equipe", owner_id="ana", team_id="t1")

        response = client.put(
            "/v1/teams/t1/settings",
            json={"actor_id": "ana", "lead_distribution_mode": "ROUND_ROBIN", "lead_reservation_minutes": 0},
            headers=AUTH,
        )

        assert response.status_code == 400


class TestJobRoutes:
    """Manual job triggers."""

    def test_jobs_require_auth(self, client):
        assert client.post("/v1/jobs/release-expired").status_code == 401

    def test_run_jobs(self, client, queued):
        assert client.post("/v1/jobs/release-expired", headers=AUTH).json() == {"success": True, "released": 0}
        assert client.post("/v1/jobs/expire-stale", headers=AUTH).json() == {"success": True, "expired": 0}
        assert client.post("/v1/jobs/recalculate", headers=AUTH).json()["active"] == 2
        cleanup = client.post("/v1/jobs/cleanup", headers=AUTH).json()
        assert set(cleanup) == {"success", "score_history", "leads"}
