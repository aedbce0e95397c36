"""
Tests for the HTTP API
======================

Tests for safetygate/web/backend using FastAPI's TestClient.

Usage:
    python -m pytest tests/test_api.py -v
"""

import tempfile

import pytest
from fastapi.testclient import TestClient

from safetygate.config import SafetyConfig
from safetygate.web.backend.main import create_app


@pytest.fixture
def client():
    """Client for an app with its own data directory. Entering runs the lifespan."""
    with tempfile.TemporaryDirectory(prefix="safetygate_api_") as tmpdir:
        app = create_app(SafetyConfig(data_dir=tmpdir))
        with TestClient(app) as test_client:
            yield test_client


class TestHealth:
    """Tests for the root endpoint."""

    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert "load_context" in body["actions"]


class TestSafetyEndpoint:
    """Tests for /api/safety."""

    def test_malformed_json(self, client):
        response = client.post(
            "/api/safety",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "MALFORMED_INPUT"

    def test_body_must_be_object(self, client):
        response = client.post("/api/safety", json=["load_context"])
        assert response.status_code == 400

    def test_unknown_action(self, client):
        response = client.post("/api/safety", json={"action": "launch_rockets", "sessionId": "s1"})
        assert response.status_code == 400
        assert "allowedActions" in response.json()["details"][0]

    def test_missing_field(self, client):
        response = client.post("/api/safety", json={"action": "clarify_intent", "sessionId": "s1"})
        assert response.status_code == 400

    def test_policy_block_is_not_an_http_error(self, client):
        client.post("/api/safety", json={
            "action": "define_scope", "sessionId": "s1", "userRequest": "Add a login page",
        })
        response = client.post("/api/safety", json={
            "action": "check_action",
            "sessionId": "s1",
            "actionType": "modify-file",
            "targetFile": ".env",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["allowed"] is False
        assert body["error"] == "SCOPE_VIOLATION"
        assert "violation" in body

        response = client.post("/api/safety", json={
            "action": "log_attempt",
            "sessionId": "s1",
            "issue": "env not loaded",
            "approach": "edit .env",
            "codeOrCommand": "vim .env",
            "result": "failure",
        })
        assert response.status_code == 200
        assert response.json()["attemptId"].startswith("A-")

    def test_check_action_description(self, client):
        response = client.post("/api/safety", json={
            "action": "check_action",
            "sessionId": "s1",
            "description": "Tweak the footer copy",
            "actionType": "modify-file",
            "targetFile": "src/app/page.tsx",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["allowed"] is True
        assert "define_scope" in body["warning"]

    def test_check_action_needs_something_to_check(self, client):
        response = client.post("/api/safety", json={"action": "check_action", "sessionId": "s1"})
        assert response.status_code == 400

    def test_gate_flow(self, client):
        response = client.post("/api/safety", json={
            "action": "clarify_intent", "sessionId": "s1", "userRequest": "build an app",
        })
        assert response.status_code == 200
        assert response.json()["readyToProceed"] is False

        response = client.post("/api/safety", json={
            "action": "answer_clarification", "sessionId": "s1",
            "questionId": "nope", "answer": "x",
        })
        assert response.status_code == 200
        assert response.json()["error"] == "UNKNOWN_QUESTION"

    def test_get_status(self, client):
        client.post("/api/safety", json={
            "action": "define_scope", "sessionId": "s1", "userRequest": "Add a login page",
        })
        response = client.get("/api/safety", params={"sessionId": "s1"})
        assert response.status_code == 200
        body = response.json()
        assert body["exists"] is True
        assert body["gates"]["scopeLocked"] is True
        assert body["safetyScore"] == 25

    def test_get_status_needs_session_id(self, client):
        assert client.get("/api/safety").status_code == 400


class TestPatternEndpoints:
    """Tests for /api/patterns/discover and /api/patterns/validate."""

    def test_discover_and_validate(self, client):
        response = client.post("/api/patterns/discover", json={"task": "Add a login form"})
        assert response.status_code == 200
        token = response.json()["sessionToken"]

        response = client.post("/api/patterns/validate", json={
            "sessionToken": token,
            "featureName": "Login form",
            "testsRun": True,
            "testsPassed": True,
            "testsWritten": ["tests/login.test.ts"],
        })
        assert response.status_code == 200
        assert response.json()["passed"] is True

        response = client.get("/api/patterns/validate", params={"sessionToken": token})
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_discover_needs_task(self, client):
        assert client.post("/api/patterns/discover", json={}).status_code == 400

    def test_validate_unknown_token_is_a_result(self, client):
        response = client.post("/api/patterns/validate", json={
            "sessionToken": "ses_unknown", "featureName": "x", "testsRun": True, "testsPassed": True,
        })
        assert response.status_code == 200
        assert response.json()["error"] == "SESSION_NOT_FOUND"

    def test_token_status_unknown(self, client):
        response = client.get("/api/patterns/validate", params={"sessionToken": "ses_unknown"})
        assert response.status_code == 404

    def test_token_status_needs_token(self, client):
        assert client.get("/api/patterns/validate").status_code == 400
