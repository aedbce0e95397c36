"""
Unit Tests for the Safety MCP Tools
===================================

Calls the tool handlers directly, without an agent session.

Usage:
    python -m pytest tests/test_safety_tools.py -v
"""

import json
import tempfile
from pathlib import Path

import pytest

from safetygate import safety_tools
from safetygate.config import SafetyConfig
from safetygate.db import dispose_db, init_db
from safetygate.safety_tools import (
    SAFETY_TOOLS,
    create_safety_tools_server,
    safety_check_action,
    safety_clarify_intent,
    safety_define_scope,
    safety_discover_patterns,
    safety_get_status,
    safety_load_context,
    safety_log_decision,
    safety_validate_complete,
)
from safetygate.service import SafetyService


@pytest.fixture
async def server():
    """Initialize the tools against a service with a temporary token database."""
    with tempfile.TemporaryDirectory(prefix="safetygate_tools_") as tmpdir:
        maker = await init_db(Path(tmpdir))
        config = create_safety_tools_server(SafetyService(SafetyConfig(data_dir=tmpdir), session_maker=maker))
        yield config
        safety_tools._service = None
        await dispose_db()


async def call_tool(tool_obj, args):
    """Call a tool handler and return (payload, is_error)."""
    result = await tool_obj.handler(args)
    text = result["content"][0]["text"]
    is_error = result.get("is_error", False)
    try:
        return json.loads(text), is_error
    except json.JSONDecodeError:
        return text, is_error


class TestServer:
    """Tests for server creation."""

    @pytest.mark.asyncio
    async def test_server_config(self, server):
        assert server["name"] == "safety"

    def test_tool_names(self):
        assert len(SAFETY_TOOLS) == 10
        assert all(name.startswith("mcp__safety__safety_") for name in SAFETY_TOOLS)
        assert "mcp__safety__" + safety_check_action.name in SAFETY_TOOLS

    @pytest.mark.asyncio
    async def test_not_initialized(self, monkeypatch):
        monkeypatch.setattr(safety_tools, "_service", None)
        payload, is_error = await call_tool(safety_get_status, {"session_id": "s1"})
        assert is_error
        assert "not initialized" in payload


class TestGateTools:
    """Tests for the in-memory gate tools."""

    @pytest.mark.asyncio
    async def test_malformed_input_is_an_error(self, server):
        payload, is_error = await call_tool(safety_clarify_intent, {"session_id": "s1"})
        assert is_error
        assert payload["error"] == "MALFORMED_INPUT"

    @pytest.mark.asyncio
    async def test_load_missing_project_is_a_result(self, server):
        with tempfile.TemporaryDirectory() as tmpdir:
            payload, is_error = await call_tool(safety_load_context, {"session_id": "s1", "project_path": tmpdir})
        assert not is_error
        assert payload["success"] is False

    @pytest.mark.asyncio
    async def test_clarify_intent(self, server):
        payload, is_error = await call_tool(safety_clarify_intent, {
            "session_id": "s1", "user_request": "build an app",
        })
        assert not is_error
        assert payload["readyToProceed"] is False
        assert payload["nextAction"] == "load_context"

    @pytest.mark.asyncio
    async def test_scope_violation_is_a_result(self, server):
        await call_tool(safety_define_scope, {"session_id": "s1", "user_request": "Add a login page"})
        payload, is_error = await call_tool(safety_check_action, {
            "session_id": "s1",
            "action": "Store the API key",
            "action_type": "modify-file",
            "target_file": ".env.local",
        })
        assert not is_error
        assert payload["blocked"] is True
        assert payload["error"] == "SCOPE_VIOLATION"

    @pytest.mark.asyncio
    async def test_log_decision_and_status(self, server):
        payload, _ = await call_tool(safety_log_decision, {
            "session_id": "s1",
            "decision": "Use Stripe for payments",
            "category": "integration",
            "reasoning": "Existing merchant account",
            "impact": "critical",
        })
        assert payload["decisionId"].startswith("D-")

        payload, _ = await call_tool(safety_get_status, {"session_id": "s1"})
        assert payload["decisionsLogged"] == 1
        assert payload["gates"]["documentationUpdated"] is True


class TestTokenTools:
    """Tests for the discover/validate pair."""

    @pytest.mark.asyncio
    async def test_discover_then_validate(self, server):
        found, is_error = await call_tool(safety_discover_patterns, {
            "task": "Add Stripe checkout", "safety_session_id": "s1",
        })
        assert not is_error
        assert "05-payments.md" in found["patterns"]

        args = {
            "session_token": found["sessionToken"],
            "feature_name": "Checkout",
            "tests_run": True,
            "tests_passed": False,
        }
        result, is_error = await call_tool(safety_validate_complete, args)
        assert not is_error
        assert result["passed"] is False
        assert result["status"] == "failed"

        again, _ = await call_tool(safety_validate_complete, {**args, "tests_passed": True})
        assert again["alreadyValidated"] is True
        assert again["passed"] is False
