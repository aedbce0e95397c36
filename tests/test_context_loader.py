"""
Tests for the Context Loader
============================

Tests for safetygate/context_loader.py
"""

import json
import tempfile
import time
from pathlib import Path

import pytest

from safetygate.config import SafetyConfig
from safetygate.context_loader import (
    ContextLoader,
    format_context_for_prompt,
    parse_attempts,
    parse_blockers,
    parse_decisions,
    parse_devlog,
    project_hash,
)
from safetygate.safety_types import AttemptResult, BlockerStatus, Impact, MadeBy


STATE = {
    "projectName": "Salon Booker",
    "currentTask": "Add booking calendar",
    "stack": {"orm": "drizzle", "auth": "nextauth"},
    "builtFeatures": ["auth"],
    "pendingFeatures": ["calendar"],
    "build": {"currentPhase": "mvp"},
}

DECISIONS_MD = """# Project Decisions

## 2025-01-15 - Use Drizzle ORM for database access

**Category:** tech-stack
**Impact:** critical
**Reversible:** No
**Made by:** user

**Reasoning:** Typed queries without a codegen step

**Alternatives considered:**
- Prisma

---

## 2025-01-16 - Use shadcn components

**Impact:** low
**Reasoning:** Fast to build

---

## Notes without a date

Ignored.
"""

ATTEMPTS_MD = """# Attempt Log

## Issue: npm install fails on windows

### Attempt 1 (failure) DO NOT RETRY
**Approach:** delete node_modules and reinstall
```
rm -rf node_modules && npm install
```
**Error:** EPERM operation not permitted

### Attempt 2 (success)
**Approach:** run the terminal as administrator
```
npm install
```
**Lesson:** Antivirus locks node_modules
"""

BLOCKED_MD = """# Blockers

## 2025-01-17 - Stripe webhook signature fails

**Category:** error
**Status:** active
**Error:** No signatures found

**Attempted Solutions:**
- Re-copied the signing secret

## 2025-01-10 - Waiting on OAuth app approval

**Category:** waiting-external
**Status:** resolved
"""

DEVLOG_MD = """# Dev Log

## 2025-01-18 - Auth pages
- `src/app/(auth)/login/page.tsx` - added login form
- `src/lib/auth/config.ts`
"""


@pytest.fixture
def project_dir():
    """A project with a state file and every context file."""
    with tempfile.TemporaryDirectory(prefix="safetygate_project_") as tmpdir:
        root = Path(tmpdir)
        (root / ".safetygate.json").write_text(json.dumps(STATE))
        context_dir = root / ".safetygate"
        context_dir.mkdir()
        (context_dir / "DECISIONS.md").write_text(DECISIONS_MD)
        (context_dir / "ATTEMPTS.md").write_text(ATTEMPTS_MD)
        (context_dir / "BLOCKED.md").write_text(BLOCKED_MD)
        (context_dir / "DEVLOG.md").write_text(DEVLOG_MD)
        yield root


class TestParsers:
    """Tests for the markdown parsers."""

    def test_parse_decisions(self):
        decisions = parse_decisions(DECISIONS_MD)
        assert [d.decision for d in decisions] == [
            "Use Drizzle ORM for database access",
            "Use shadcn components",
        ]
        drizzle, shadcn = decisions
        assert drizzle.impact is Impact.CRITICAL
        assert drizzle.reversible is False
        assert drizzle.made_by is MadeBy.USER
        assert drizzle.alternatives_considered == ("Prisma",)
        assert drizzle.timestamp == "2025-01-15"
        # category inferred from wording when missing
        assert shadcn.category.value == "ui-design"

    def test_decision_ids_are_stable(self):
        assert [d.id for d in parse_decisions(DECISIONS_MD)] == [d.id for d in parse_decisions(DECISIONS_MD)]

    def test_parse_attempts(self):
        failed, worked = parse_attempts(ATTEMPTS_MD)
        assert failed.issue == "npm install fails on windows"
        assert failed.result is AttemptResult.FAILURE
        assert failed.should_not_retry
        assert failed.code_or_command == "rm -rf node_modules && npm install"
        assert failed.error_message == "EPERM operation not permitted"
        assert worked.result is AttemptResult.SUCCESS
        assert worked.lessons_learned == "Antivirus locks node_modules"

    def test_parse_blockers(self):
        blockers = parse_blockers(BLOCKED_MD)
        assert len(blockers) == 2
        assert blockers[0].status is BlockerStatus.ACTIVE
        assert blockers[0].attempts_made == ["Re-copied the signing secret"]
        assert blockers[1].status is BlockerStatus.RESOLVED

    def test_parse_devlog(self):
        changes = parse_devlog(DEVLOG_MD)
        assert [c.file for c in changes] == ["src/app/(auth)/login/page.tsx", "src/lib/auth/config.ts"]
        assert changes[0].change == "added login form"
        assert changes[1].change == ""

    def test_garbage_is_ignored(self):
        assert parse_decisions("no headings at all") == []
        assert parse_attempts("## Not an issue\ntext") == []


class TestContextLoader:
    """Tests for loading from disk."""

    @pytest.mark.asyncio
    async def test_load_project(self, project_dir):
        result = await ContextLoader().load(project_dir)
        assert result.success
        context = result.context
        assert context.project_name == "Salon Booker"
        assert context.current_phase == "mvp"
        assert context.stack == {"orm": "drizzle", "auth": "nextauth"}
        assert len(context.decisions) == 2
        assert len(context.critical_decisions) == 1
        assert len(context.failed_attempts) == 1
        assert len(context.active_blockers) == 1
        assert context.recent_changes[0].date == "2025-01-18"
        assert context.project_path == str(project_dir)
        assert context.project_hash == project_hash(str(project_dir.resolve()))
        assert any("critical decisions" in w for w in result.warnings)
        assert any("active blockers" in w for w in result.warnings)
        assert any("do not retry" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_missing_project(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            result = await ContextLoader().load(tmpdir)
        assert not result.success
        assert result.context is None
        assert ".safetygate.json" in result.errors[0]

    @pytest.mark.asyncio
    async def test_context_dir_without_state(self, project_dir):
        (project_dir / ".safetygate.json").unlink()
        result = await ContextLoader().load(project_dir)
        assert result.success
        assert result.context.project_name == project_dir.resolve().name
        assert any("using defaults" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_malformed_state(self, project_dir):
        (project_dir / ".safetygate.json").write_text("{broken")
        result = await ContextLoader().load(project_dir)
        assert not result.success
        assert "Malformed state JSON" in result.errors[0]

    @pytest.mark.asyncio
    async def test_oversized_file_truncated(self, project_dir):
        loader = ContextLoader(SafetyConfig(context_max_bytes=64))
        result = await loader.load(project_dir)
        assert any("truncated" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_custom_file_names(self, project_dir):
        (project_dir / ".safetygate.json").rename(project_dir / "state.json")
        config = SafetyConfig(state_file_name="state.json")
        result = await ContextLoader(config).load(project_dir)
        assert result.context.project_name == "Salon Booker"

    @pytest.mark.asyncio
    async def test_slow_filesystem_times_out(self, project_dir, monkeypatch):
        def slow_is_file(self):
            time.sleep(0.5)
            return True

        monkeypatch.setattr(Path, "is_file", slow_is_file)
        loader = ContextLoader(SafetyConfig(context_read_timeout_seconds=0.05))
        result = await loader.load(project_dir)
        assert not result.success
        assert result.context is None
        assert "Timed out" in result.warnings[0]


class TestLoadFromContent:
    """Tests for inline content."""

    def test_inline(self):
        result = ContextLoader().load_from_content(
            state_json=json.dumps(STATE),
            decisions=DECISIONS_MD,
        )
        assert result.success
        assert result.context.project_name == "Salon Booker"
        assert result.context.attempts == []

    def test_no_state(self):
        result = ContextLoader().load_from_content(decisions=DECISIONS_MD)
        assert result.context.project_name == "Unknown"
        assert result.context.project_hash == project_hash("Unknown")

    def test_state_must_be_object(self):
        result = ContextLoader().load_from_content(state_json="[1, 2]")
        assert not result.success

    def test_bad_stack_ignored(self):
        result = ContextLoader().load_from_content(state_json=json.dumps({"stack": ["drizzle"]}))
        assert result.context.stack == {}

    def test_feature_lists_must_be_lists(self):
        state = {"projectName": "Salon Booker", "builtFeatures": 3, "pendingFeatures": "booking"}
        result = ContextLoader().load_from_content(state_json=json.dumps(state))
        assert result.success
        assert result.context.built_features == []
        assert result.context.pending_features == []

    def test_prompt_format(self):
        context = ContextLoader().load_from_content(
            state_json=json.dumps(STATE),
            decisions=DECISIONS_MD,
            attempts=ATTEMPTS_MD,
        ).context
        text = format_context_for_prompt(context)
        assert text.startswith("## PROJECT CONTEXT")
        assert "**Project:** Salon Booker" in text
        assert "CRITICAL DECISIONS" in text
        assert "delete node_modules and reinstall" in text
