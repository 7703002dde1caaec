"""
Tests for server.py - the HTTP API and its error envelope.
"""

import pytest
from fastapi.testclient import TestClient

from jobtracker.adapter import RemoteStoreAdapter
from jobtracker.coordinator import MutationState
from jobtracker.errors import ErrorKind
from jobtracker.identity import Identity, StaticTokenVerifier
from jobtracker.models import EntityType
from jobtracker.server import create_app
from jobtracker.session import TrackerSession

ALICE = {"Authorization": "Bearer token-alice"}
BOB = {"Authorization": "Bearer token-bob"}


@pytest.fixture
def client(store) -> TestClient:
    verifier = StaticTokenVerifier({"token-alice": "alice", "token-bob": "bob"})
    return TestClient(create_app(store, verifier))


class TestAuth:
    """Every collection route needs a valid bearer token."""

    def test_missing_token(self, client):
        resp = client.get("/api/jobs")

        assert resp.status_code == 401
        assert resp.json()["error"] == {
            "kind": "unauthorized",
            "message": "Unauthorized: No token provided or incorrect format",
        }

    def test_wrong_scheme(self, client):
        resp = client.get("/api/jobs", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401

    def test_unknown_token(self, client):
        resp = client.get("/api/companies", headers={"Authorization": "Bearer nope"})

        assert resp.status_code == 401
        assert "Invalid token" in resp.json()["error"]["message"]

    def test_index_is_public(self, client):
        resp = client.get("/")
        assert resp.status_code == 200


class TestJobsRoutes:
    """Test CRUD over /api/jobs."""

    def test_create_job(self, client, job_fields):
        resp = client.post("/api/jobs", json={**job_fields, "user_id": "bob", "id": "mine"}, headers=ALICE)

        assert resp.status_code == 201
        body = resp.json()
        assert body["owner_id"] == "alice"
        assert body["id"] != "mine"
        assert body["status"] == "wishlist"
        assert body["position"] == {"x": 0, "y": 0}

    def test_create_missing_title(self, client):
        resp = client.post("/api/jobs", json={"company": "Acme"}, headers=ALICE)

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["kind"] == "validation"
        assert "Missing required field: title" in error["errors"]

    def test_create_non_object_body(self, client):
        resp = client.post("/api/jobs", json=["title"], headers=ALICE)

        assert resp.status_code == 400
        assert resp.json()["error"]["kind"] == "validation"

    def test_list_only_own_jobs(self, client, job_fields):
        client.post("/api/jobs", json=job_fields, headers=ALICE)
        client.post("/api/jobs", json=job_fields, headers=BOB)

        resp = client.get("/api/jobs", headers=ALICE)

        assert resp.status_code == 200
        assert [j["owner_id"] for j in resp.json()] == ["alice"]

    def test_unknown_order_field(self, client):
        resp = client.get("/api/jobs", params={"order": "salary"}, headers=ALICE)
        assert resp.status_code == 400

    def test_foreign_job_is_not_found(self, client, job_fields):
        job_id = client.post("/api/jobs", json=job_fields, headers=BOB).json()["id"]

        for resp in (
            client.get(f"/api/jobs/{job_id}", headers=ALICE),
            client.put(f"/api/jobs/{job_id}", json={"title": "mine"}, headers=ALICE),
            client.delete(f"/api/jobs/{job_id}", headers=ALICE),
        ):
            assert resp.status_code == 404
            assert resp.json()["error"]["message"] == "Job not found or access denied"

        assert client.get(f"/api/jobs/{job_id}", headers=BOB).json()["title"] == job_fields["title"]

    def test_update_job(self, client, job_fields):
        job_id = client.post("/api/jobs", json=job_fields, headers=ALICE).json()["id"]

        resp = client.put(f"/api/jobs/{job_id}", json={"status": "offer"}, headers=ALICE)

        assert resp.status_code == 200
        assert resp.json()["status"] == "offer"

    def test_empty_update(self, client, job_fields):
        job_id = client.post("/api/jobs", json=job_fields, headers=ALICE).json()["id"]

        resp = client.put(f"/api/jobs/{job_id}", json={"user_id": "bob"}, headers=ALICE)

        assert resp.status_code == 400

    def test_delete_job(self, client, job_fields):
        job_id = client.post("/api/jobs", json=job_fields, headers=ALICE).json()["id"]

        resp = client.delete(f"/api/jobs/{job_id}", headers=ALICE)

        assert resp.status_code == 200
        assert resp.json()["message"] == "Job deleted successfully"
        assert resp.json()["deleted"]["id"] == job_id
        assert client.get(f"/api/jobs/{job_id}", headers=ALICE).status_code == 404


class TestCompaniesRoutes:
    """Test /api/companies."""

    def test_create_empty_company(self, client):
        resp = client.post("/api/companies", json={}, headers=ALICE)

        assert resp.status_code == 201
        assert resp.json()["starred"] is False

    def test_bad_last_updated(self, client):
        resp = client.post("/api/companies", json={"last_updated": "yesterday"}, headers=ALICE)
        assert resp.status_code == 400


class TestRemoteSession:
    """A session talking to the API over HTTP."""

    @pytest.mark.asyncio
    async def test_session_over_http(self, client):
        session = TrackerSession(lambda identity: RemoteStoreAdapter("http://testserver", identity, http=client))
        await session.sign_in("alice", "token-alice")

        created = await session.add_job("Backend Engineer", "Acme")
        moved = await session.move_job(created.entity.id, "applied")
        foreign = await session.update(EntityType.JOB, "no-such-id", {"notes": "x"})

        assert created.ok and moved.ok
        assert session.list(EntityType.JOB) == [moved.entity]
        assert foreign.state is MutationState.REJECTED
        assert foreign.error.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_rejected_token(self, client):
        session = TrackerSession(lambda identity: RemoteStoreAdapter("http://testserver", identity, http=client))
        await session.sign_in("alice", "token-alice")
        session.coordinator.adapter.identity = Identity.signed_in("alice", "stale")

        result = await session.add_job("SRE", "Beta")

        assert result.state is MutationState.ROLLED_BACK
        assert result.error.kind is ErrorKind.UNAUTHORIZED
        assert session.list(EntityType.JOB) == []
