"""
Tests for the Enforcement Token Service
=======================================

Tests for safetygate/enforcement.py against a temporary SQLite database.

Usage:
    python -m pytest tests/test_enforcement.py -v
"""

import asyncio
import re
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import func, select

from safetygate.db import PatternDiscoveryModel, PatternValidationModel, dispose_db, init_db
from safetygate.enforcement import EnforcementService, ValidateInput, build_checklist
from safetygate.gates import Gate
from safetygate.patterns import StaticContentProvider
from safetygate.safety_types import Severity
from safetygate.session_store import InMemorySessionStore


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self):
        self.current = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
async def session_maker():
    """Fresh enforcement database per test."""
    with tempfile.TemporaryDirectory(prefix="safetygate_db_") as tmpdir:
        maker = await init_db(Path(tmpdir))
        yield maker
        # Close database connections before cleanup
        await dispose_db()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(session_maker, clock):
    return EnforcementService(session_maker=session_maker, now=clock)


def passing(token: str, **overrides) -> ValidateInput:
    values = dict(
        session_token=token,
        feature_name="Login page",
        tests_run=True,
        tests_passed=True,
        tests_written=["tests/login.test.ts"],
    )
    values.update(overrides)
    return ValidateInput(**values)


# =============================================================================
# Checklist
# =============================================================================

class TestBuildChecklist:
    """Tests for the pure completion checklist."""

    def test_clean(self):
        assert build_checklist(passing("t"), start_gate_passed=True) == []

    def test_tests_not_run(self):
        issues = build_checklist(passing("t", tests_run=False), start_gate_passed=True)
        assert [i.type for i in issues] == ["TESTS_NOT_RUN"]
        assert issues[0].severity is Severity.ERROR

    def test_tests_failed_and_typescript(self):
        issues = build_checklist(passing("t", tests_passed=False, typescript_passed=False), start_gate_passed=True)
        assert [i.type for i in issues] == ["TESTS_FAILED", "TYPESCRIPT_ERROR"]

    def test_no_tests_written_is_a_warning(self):
        issues = build_checklist(passing("t", tests_written=[]), start_gate_passed=True)
        assert [(i.type, i.severity) for i in issues] == [("NO_TESTS_WRITTEN", Severity.WARNING)]

    def test_start_gate(self):
        issues = build_checklist(passing("t"), start_gate_passed=False)
        assert issues[0].type == "START_GATE_NOT_PASSED"

    def test_enhanced_gates_warn(self):
        issues = build_checklist(passing("t"), True, {Gate.CONTEXT_LOADED: True})
        assert [i.type for i in issues] == ["INTENT_NOT_CLARIFIED", "SCOPE_NOT_LOCKED"]
        assert all(i.severity is Severity.WARNING for i in issues)


# =============================================================================
# Start gate
# =============================================================================

class TestDiscoverPatterns:
    """Tests for discover_patterns."""

    @pytest.mark.asyncio
    async def test_issues_token(self, service, clock):
        result = await service.discover_patterns("Add OAuth login page", files=["src/app/login/page.tsx"])
        assert result["sessionToken"].startswith("ses_")
        assert len(result["sessionToken"]) == 36
        assert result["patterns"][0] == "00-core.md"
        assert "02-auth.md" in result["patterns"]
        assert result["hasExactMatch"] is True
        assert "relatedSuggestions" not in result
        assert result["expiresAt"] == (clock.current + timedelta(hours=2)).isoformat()

    @pytest.mark.asyncio
    async def test_oauth_login_scenario(self, service):
        result = await service.discover_patterns("add login with OAuth")
        assert re.fullmatch(r"ses_[0-9a-f]{32}", result["sessionToken"])
        assert {"00-core.md", "02-auth.md"} <= set(result["patterns"])
        assert result["hasExactMatch"] is True

    @pytest.mark.asyncio
    async def test_fallback_modules(self, service):
        result = await service.discover_patterns("Nightly cron job to export a PDF report")
        assert result["patterns"] == ["00-core.md", "04-frontend.md", "03-api.md"]
        assert result["hasExactMatch"] is False
        assert [s["category"] for s in result["relatedSuggestions"]] == ["background-jobs", "documents"]

    @pytest.mark.asyncio
    async def test_explicit_keywords(self, service):
        result = await service.discover_patterns("Do the thing", keywords=["Stripe", "nonsense"])
        assert result["keywords"] == ["stripe"]
        assert result["patterns"] == ["00-core.md", "05-payments.md"]

    @pytest.mark.asyncio
    async def test_pattern_contents(self, session_maker, clock):
        service = EnforcementService(
            session_maker=session_maker,
            content=StaticContentProvider({"00-core.md": "# Core"}),
            now=clock,
        )
        result = await service.discover_patterns("Add a login form")
        contents = {c["name"]: c for c in result["patternContents"]}
        assert contents["00-core.md"] == {"name": "00-core.md", "found": True, "content": "# Core"}
        assert contents["02-auth.md"]["found"] is False

    @pytest.mark.asyncio
    async def test_pattern_contents_read_off_the_event_loop(self, session_maker, clock):
        reader_threads = []

        class RecordingProvider(StaticContentProvider):
            def get(self, name):
                reader_threads.append(threading.get_ident())
                return super().get(name)

        service = EnforcementService(
            session_maker=session_maker,
            content=RecordingProvider({"00-core.md": "# Core"}),
            now=clock,
        )
        result = await service.discover_patterns("Add a login form")
        assert result["patternContents"][0]["content"] == "# Core"
        assert reader_threads
        assert threading.get_ident() not in reader_threads

    @pytest.mark.asyncio
    async def test_records_discovery(self, service, session_maker):
        await service.discover_patterns("Add a login form")
        async with session_maker() as db:
            count = await db.scalar(select(func.count()).select_from(PatternDiscoveryModel))
        assert count == 1

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, service):
        first = await service.discover_patterns("Add a login form")
        second = await service.discover_patterns("Add a login form")
        assert first["sessionToken"] != second["sessionToken"]


# =============================================================================
# End gate
# =============================================================================

class TestValidateComplete:
    """Tests for validate_complete and the token lifecycle."""

    @pytest.mark.asyncio
    async def test_pass(self, service):
        token = (await service.discover_patterns("Add a login form"))["sessionToken"]
        result = await service.validate_complete(passing(token))
        assert result["passed"] is True
        assert result["status"] == "completed"
        assert result["safetyScore"] == 100
        assert result["issues"] == []
        assert result["alreadyValidated"] is False

        session = await service.get_session(token)
        assert session["status"] == "completed"
        assert session["endGatePassed"] is True

    @pytest.mark.asyncio
    async def test_unknown_token(self, service):
        result = await service.validate_complete(passing("ses_missing"))
        assert result["passed"] is False
        assert result["error"] == "SESSION_NOT_FOUND"
        assert result["safetyGatesSkipped"] == ["discover_patterns"]

    @pytest.mark.asyncio
    async def test_failure_is_terminal(self, service):
        token = (await service.discover_patterns("Add a login form"))["sessionToken"]
        failed = await service.validate_complete(passing(token, tests_run=False))
        assert failed["passed"] is False
        assert failed["status"] == "failed"
        assert failed["issues"][0]["type"] == "TESTS_NOT_RUN"

        again = await service.validate_complete(passing(token))
        assert again["passed"] is False
        assert again["alreadyValidated"] is True
        assert again["issues"] == failed["issues"]

    @pytest.mark.asyncio
    async def test_completed_is_idempotent(self, service):
        token = (await service.discover_patterns("Add a login form"))["sessionToken"]
        first = await service.validate_complete(passing(token, tests_written=[]))
        second = await service.validate_complete(passing(token, tests_run=False))
        assert second["passed"] is True
        assert second["alreadyValidated"] is True
        assert second["issues"] == first["issues"]
        assert second["safetyScore"] == first["safetyScore"]

    @pytest.mark.asyncio
    async def test_expired_token(self, service, clock):
        token = (await service.discover_patterns("Add a login form"))["sessionToken"]
        clock.advance(hours=2, seconds=1)
        result = await service.validate_complete(passing(token))
        assert result["passed"] is False
        assert result["error"] == "SESSION_EXPIRED"
        assert result["status"] == "expired"

        again = await service.validate_complete(passing(token))
        assert again["error"] == "SESSION_EXPIRED"
        session = await service.get_session(token)
        assert session["status"] == "expired"
        assert session["isExpired"] is True

    @pytest.mark.asyncio
    async def test_completed_stays_completed_after_ttl(self, service, clock):
        token = (await service.discover_patterns("Add a login form"))["sessionToken"]
        await service.validate_complete(passing(token))
        clock.advance(hours=5)
        result = await service.validate_complete(passing(token))
        assert result["passed"] is True
        assert result["status"] == "completed"

    @pytest.mark.asyncio
    async def test_ttl_is_configurable(self, session_maker, clock):
        service = EnforcementService(session_maker=session_maker, ttl_seconds=60, now=clock)
        token = (await service.discover_patterns("Add a login form"))["sessionToken"]
        clock.advance(seconds=61)
        result = await service.validate_complete(passing(token))
        assert result["error"] == "SESSION_EXPIRED"

    @pytest.mark.asyncio
    async def test_concurrent_validation_has_one_winner(self, service, session_maker):
        token = (await service.discover_patterns("Add a login form"))["sessionToken"]
        results = await asyncio.gather(*(service.validate_complete(passing(token)) for _ in range(5)))

        assert all(r["passed"] for r in results)
        assert sum(1 for r in results if not r["alreadyValidated"]) == 1
        async with session_maker() as db:
            count = await db.scalar(select(func.count()).select_from(PatternValidationModel))
        assert count == 1


class TestEnhancedMode:
    """Tests for validation linked to a safety session."""

    @pytest.mark.asyncio
    async def test_reports_skipped_gates(self, session_maker, clock):
        store = InMemorySessionStore()
        with store.locked("chat-1", create=True) as session:
            session.gates.mark(Gate.CONTEXT_LOADED)
        service = EnforcementService(session_maker=session_maker, session_store=store, now=clock)

        token = (await service.discover_patterns("Add a login form", safety_session_id="chat-1"))["sessionToken"]
        result = await service.validate_complete(passing(token))

        assert result["passed"] is True
        assert result["safetyScore"] == 50
        assert result["safetyGatesSkipped"] == ["clarify_intent", "define_scope"]
        assert {i["type"] for i in result["issues"]} == {"INTENT_NOT_CLARIFIED", "SCOPE_NOT_LOCKED"}
        assert store.get("chat-1").gates.is_set(Gate.VERIFICATION_PASSED)

    @pytest.mark.asyncio
    async def test_failed_validation_does_not_verify(self, session_maker, clock):
        store = InMemorySessionStore()
        store.get_or_create("chat-1")
        service = EnforcementService(session_maker=session_maker, session_store=store, now=clock)

        token = (await service.discover_patterns("Add a login form"))["sessionToken"]
        result = await service.validate_complete(passing(token, tests_passed=False, safety_session_id="chat-1"))

        assert result["passed"] is False
        assert result["safetyScore"] == 25
        assert not store.get("chat-1").gates.is_set(Gate.VERIFICATION_PASSED)


class TestHousekeeping:
    """Tests for get_session and expire_stale."""

    @pytest.mark.asyncio
    async def test_get_session_reports_expiry_without_applying_it(self, service, clock):
        token = (await service.discover_patterns("Add a login form"))["sessionToken"]
        clock.advance(hours=3)
        session = await service.get_session(token)
        assert session["status"] == "active"
        assert session["isExpired"] is True

    @pytest.mark.asyncio
    async def test_get_session_missing(self, service):
        assert await service.get_session("ses_nope") is None

    @pytest.mark.asyncio
    async def test_expire_stale(self, service, clock):
        old = (await service.discover_patterns("Add a login form"))["sessionToken"]
        done = (await service.discover_patterns("Add a signup form"))["sessionToken"]
        await service.validate_complete(passing(done))
        clock.advance(hours=3)
        fresh = (await service.discover_patterns("Add a logout button"))["sessionToken"]

        assert await service.expire_stale() == 1
        assert (await service.get_session(old))["status"] == "expired"
        assert (await service.get_session(done))["status"] == "completed"
        assert (await service.get_session(fresh))["status"] == "active"
