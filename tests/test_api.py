"""Tests for the FastAPI API endpoints."""

import httpx
import pytest
from fastapi.testclient import TestClient

from intake_kernel.api.app import create_app
from intake_kernel.config import IntakeSettings
from intake_kernel.ingestion.fetcher import WebFetcher
from intake_kernel.llm.provider import NullLLMProvider
from intake_kernel.store.store import IntakeStore

USER_A = {"Authorization": "Bearer user_a"}
USER_B = {"Authorization": "Bearer user_b"}

STUDIO_HTML = """
<html><body>
<h1>Golden Hour Studio</h1>
<p>Portrait and wedding photography in the city. Clients book a session online and
receive their edited gallery within two weeks.</p>
</body></html>
"""

READY_OPTIONS = [
    "business_type:service",
    "outcome:book",
    "capability:online_scheduling",
    "monetization:later",
    "quality:customer_flow",
]


def _site(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "text/html"}, text=STUDIO_HTML)


@pytest.fixture
def client():
    """Create a test client with fresh components and no network."""
    settings = IntakeSettings()
    fetcher = WebFetcher(settings, client=httpx.Client(transport=httpx.MockTransport(_site)))
    app = create_app(
        store=IntakeStore(":memory:"),
        llm=NullLLMProvider(),
        fetcher=fetcher,
        settings=settings,
    )
    return TestClient(app)


def _create_project(client, headers=USER_A) -> str:
    response = client.post("/projects", json={"name": "Studio app"}, headers=headers)
    assert response.status_code == 200
    return response.json()["id"]


def _turn(client, project_id, headers=USER_A, **body):
    return client.post(f"/projects/{project_id}/turns", json=body, headers=headers)


class TestAuth:
    def test_missing_token(self, client):
        response = client.post("/projects", json={})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_REQUIRED"
        assert response.json()["error"]["layer"] == "auth"

    def test_malformed_token(self, client):
        response = client.post("/projects", json={}, headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_foreign_project_is_forbidden(self, client):
        project_id = _create_project(client)
        response = client.get(f"/projects/{project_id}", headers=USER_B)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PROJECT_FORBIDDEN"

        turn = _turn(client, project_id, headers=USER_B, user_message="hello there")
        assert turn.status_code == 403

    def test_unknown_project(self, client):
        response = client.get("/projects/proj_missing", headers=USER_A)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PROJECT_NOT_FOUND"

    def test_custom_identity_resolver(self):
        app = create_app(
            store=IntakeStore(":memory:"),
            llm=NullLLMProvider(),
            settings=IntakeSettings(),
            identity_resolver=lambda token: "user_x" if token == "secret" else None,
        )
        client = TestClient(app)
        assert client.post("/projects", json={}, headers={"Authorization": "Bearer nope"}).status_code == 401
        created = client.post("/projects", json={}, headers={"Authorization": "Bearer secret"})
        assert created.json()["owner_user_id"] == "user_x"


class TestInterviewFlow:
    def test_first_turn(self, client):
        project_id = _create_project(client)
        response = _turn(client, project_id, user_message="I run a wedding photography studio")

        assert response.status_code == 200
        data = response.json()
        assert data["branch"] == "business_type_gap"
        assert data["can_commit"] is False
        assert [o["id"] for o in data["options"]][0] == "business_type:service"
        unresolved = {u["decision_key"]: u["reason"] for u in data["unresolved"]}
        assert unresolved == {"business_type": "assumed"}

    def test_empty_turn_rejected(self, client):
        project_id = _create_project(client)
        response = _turn(client, project_id)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "USER_MESSAGE_REQUIRED"

    def test_full_funnel_to_commit(self, client):
        project_id = _create_project(client)
        _turn(client, project_id, user_message="I run a wedding photography studio")

        data = None
        for option in READY_OPTIONS:
            data = _turn(client, project_id, selected_option_id=option).json()
        assert data["branch"] == "ready_for_commit"
        assert data["can_commit"] is True

        commit = client.post(f"/projects/{project_id}/commit", json={}, headers=USER_A)
        assert commit.status_code == 200
        result = commit.json()
        assert len(result["documents"]) == 10
        assert result["reused_existing_version"] is False

        again = client.post(f"/projects/{project_id}/commit", json={"mode": "strengthen"}, headers=USER_A)
        assert again.json()["reused_existing_version"] is True

        versions = client.get(f"/projects/{project_id}/cycles/1/contracts", headers=USER_A).json()
        assert [v["version_number"] for v in versions] == [1]

        detail = client.get(f"/projects/{project_id}/contracts/{versions[0]['id']}", headers=USER_A).json()
        assert len(detail["documents"]) == 10
        assert len(detail["strength"]) == 10
        assert all(doc["claims"] for doc in detail["documents"])

        audit = client.get(
            f"/projects/{project_id}/cycles/1/audit",
            params={"event_type": "contract.committed"},
            headers=USER_A,
        ).json()
        assert len(audit) == 1

    def test_free_text_answers_open_gate(self, client):
        project_id = _create_project(client)
        for option in READY_OPTIONS[:4]:
            _turn(client, project_id, selected_option_id=option)

        answers = [
            "Couples pick a date and package, then pay a deposit to hold the day.",
            "After the shoot they get a private gallery link to download their photos.",
            "I want reminders to go out a week before each session so nobody forgets.",
        ]
        data = None
        for answer in answers:
            response = _turn(client, project_id, user_message=answer)
            assert response.status_code == 200
            data = response.json()

        assert data["can_commit"] is True
        assert data["readiness"]["rich_evidence_turns"] == 3

        commit = client.post(f"/projects/{project_id}/commit", json={}, headers=USER_A)
        assert commit.status_code == 200
        documents = commit.json()["documents"]
        assert len(documents) == 10
        assert all(claim["provenance_refs"] for doc in documents for claim in doc["claims"])

    def test_malformed_body_is_a_validation_error(self, client):
        project_id = _create_project(client)

        response = _turn(client, project_id, checkpoint_response={"action": "bogus"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "REQUEST_INVALID"
        assert error["layer"] == "validation"
        assert error["reasons"]
        assert error["reasons"][0]["loc"][-1] == "action"

        readiness = client.get(f"/projects/{project_id}/cycles/1/readiness", headers=USER_A).json()
        assert readiness["user_turns"] == 0

    def test_commit_gate_closed(self, client):
        project_id = _create_project(client)
        _turn(client, project_id, selected_option_id="business_type:service")

        response = client.post(f"/projects/{project_id}/commit", json={}, headers=USER_A)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "COMMIT_GATE_UNMET"
        assert any(i["code"] == "CORE_DECISION_UNCONFIRMED" for i in error["issues"])

    def test_invalid_commit_mode(self, client):
        project_id = _create_project(client)
        response = client.post(f"/projects/{project_id}/commit", json={"mode": "turbo"}, headers=USER_A)
        assert response.status_code == 400

    def test_unknown_contract_version(self, client):
        project_id = _create_project(client)
        response = client.get(f"/projects/{project_id}/contracts/cv_missing", headers=USER_A)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "CONTRACT_NOT_FOUND"

    def test_inspection_endpoints(self, client):
        project_id = _create_project(client)
        _turn(client, project_id, selected_option_id="outcome:book")

        decisions = client.get(f"/projects/{project_id}/cycles/1/decisions", headers=USER_A).json()
        assert [d["decision_key"] for d in decisions] == ["primary_outcome"]

        readiness = client.get(f"/projects/{project_id}/cycles/1/readiness", headers=USER_A).json()
        assert readiness["can_commit"] is False
        assert readiness["user_turns"] == 1

        audit = client.get(f"/projects/{project_id}/cycles/1/audit", headers=USER_A).json()
        assert [e["event_type"] for e in audit] == ["turn.advanced"]


class TestWebsiteFlow:
    def test_url_opens_checkpoint_and_yes_confirms(self, client):
        project_id = _create_project(client)

        first = _turn(client, project_id, user_message="Our site is https://goldenhour.example.com").json()
        assert first["branch"] == "checkpoint_pending"
        assert first["checkpoint_id"]
        assert first["can_commit"] is False
        assert first["ingestion_degraded"] is False
        assert first["prompt"].endswith("Is this understanding correct?")
        assert [o["id"] for o in first["options"]][0] == "checkpoint:confirm"

        second = _turn(client, project_id, user_message="yes").json()
        assert second["checkpoint_id"] is None
        assert second["branch"] == "business_type_gap"

        readiness = client.get(f"/projects/{project_id}/cycles/1/readiness", headers=USER_A).json()
        website = next(b for b in readiness["buckets"] if b["key"] == "website_context")
        assert website["status"] == "resolved"

    def test_typed_selection_ignored_while_checkpoint_pending(self, client):
        project_id = _create_project(client)
        _turn(client, project_id, artifact_ref="https://goldenhour.example.com")

        response = _turn(client, project_id, selected_option_id="outcome:book").json()

        assert response["branch"] == "checkpoint_pending"
        decisions = client.get(f"/projects/{project_id}/cycles/1/decisions", headers=USER_A).json()
        assert "primary_outcome" not in [d["decision_key"] for d in decisions]

    def test_checkpoint_response_with_correction(self, client):
        project_id = _create_project(client)
        opened = _turn(client, project_id, artifact_ref="https://goldenhour.example.com").json()

        response = _turn(client, project_id, checkpoint_response={
            "checkpoint_id": opened["checkpoint_id"],
            "action": "reject",
            "correction_text": "We only shoot newborn portraits.",
        })

        assert response.status_code == 200
        assert response.json()["checkpoint_id"] is None
        audit = client.get(
            f"/projects/{project_id}/cycles/1/audit",
            params={"event_type": "checkpoint.resolved"},
            headers=USER_A,
        ).json()
        assert len(audit) == 1

    def test_unknown_checkpoint(self, client):
        project_id = _create_project(client)
        response = _turn(client, project_id, checkpoint_response={"checkpoint_id": "cp_missing", "action": "confirm"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "CHECKPOINT_NOT_FOUND"

        readiness = client.get(f"/projects/{project_id}/cycles/1/readiness", headers=USER_A).json()
        assert readiness["user_turns"] == 0
        assert client.get(f"/projects/{project_id}/cycles/1/audit", headers=USER_A).json() == []

    def test_private_host_degrades_without_checkpoint(self, client):
        project_id = _create_project(client)

        data = _turn(client, project_id, artifact_ref="https://127.0.0.1/admin").json()

        assert data["ingestion_degraded"] is True
        assert "HOST_BLOCKED" in data["artifact_status"]
        assert data["checkpoint_id"] is None
        assert data["branch"] == "business_type_gap"
