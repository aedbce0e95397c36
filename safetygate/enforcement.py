"""
Enforcement Token Service
=========================

The durable two-gate contract:

1. discover_patterns issues a token (ses_<32 hex>) and records which
   guidance modules the assistant was given. This is the start gate.
2. validate_complete runs the completion checklist against that token.
   This is the end gate.

Tokens live in SQLite so they survive restarts. Status only moves
active -> completed | failed | expired, and each terminal transition is a
conditional UPDATE (WHERE status = 'active'), so two concurrent validators
cannot both win. The loser gets the recorded outcome back.

Enhanced mode: when the token carries a reference to an in-memory safety
session (safetySessionId), validation also reports which optional gates
(context, intent, scope) were skipped, as warnings.

Usage:
    service = EnforcementService(session_maker)
    found = await service.discover_patterns("Add OAuth login")
    result = await service.validate_complete(ValidateInput(
        session_token=found["sessionToken"],
        feature_name="OAuth login",
        tests_run=True,
        tests_passed=True,
        tests_written=["tests/auth.test.ts"],
    ))
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from safetygate.db.connection import get_session_maker
from safetygate.db.models import EnforcementSessionModel, PatternDiscoveryModel, PatternValidationModel
from safetygate.errors import ErrorKind
from safetygate.gates import Gate
from safetygate.patterns import (
    CORE_MODULE,
    DEFAULT_MODULES,
    ContentProvider,
    extract_keywords,
    modules_for_keywords,
    normalize_keywords,
    suggest_categories,
)
from safetygate.safety_types import EnforcementStatus, Severity, ValidationIssue, to_wire
from safetygate.session_store import SessionStore

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "ses_"
DEFAULT_TTL_SECONDS = 2 * 60 * 60

# Optional gates checked in enhanced mode: gate -> (issue type, call that satisfies it)
ENHANCED_GATES = (
    (Gate.CONTEXT_LOADED, "CONTEXT_NOT_LOADED", "load_context"),
    (Gate.INTENT_CLARIFIED, "INTENT_NOT_CLARIFIED", "clarify_intent"),
    (Gate.SCOPE_LOCKED, "SCOPE_NOT_LOCKED", "define_scope"),
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands DateTime columns back without tzinfo; they are stored as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = _as_utc(value)
    return value.isoformat() if value else None


def new_session_token() -> str:
    return TOKEN_PREFIX + uuid.uuid4().hex


@dataclass
class ValidateInput:
    session_token: str
    feature_name: str
    tests_run: bool = False
    tests_passed: bool = False
    typescript_passed: Optional[bool] = None
    feature_description: Optional[str] = None
    files_modified: Sequence[str] = field(default_factory=list)
    tests_written: Sequence[str] = field(default_factory=list)
    safety_session_id: Optional[str] = None


def build_checklist(
    data: ValidateInput,
    start_gate_passed: bool,
    safety_gates: Optional[dict[Gate, bool]] = None,
) -> list[ValidationIssue]:
    """
    Completion checklist. Pure.

    Args:
        data: What the caller reports about the finished work
        start_gate_passed: Whether discover_patterns ran for this token
        safety_gates: Gate flags of the linked safety session (enhanced mode only)

    Returns:
        Issues in checklist order; error severity means validation fails
    """
    issues = []
    if not start_gate_passed:
        issues.append(ValidationIssue(
            "START_GATE_NOT_PASSED",
            "discover_patterns was not completed for this token.",
        ))
    if not data.tests_run:
        issues.append(ValidationIssue(
            "TESTS_NOT_RUN",
            "Tests were not run. Run the test suite before completing.",
        ))
    elif not data.tests_passed:
        issues.append(ValidationIssue(
            "TESTS_FAILED",
            "Tests are failing. Fix them before completing.",
        ))
    if data.typescript_passed is False:
        issues.append(ValidationIssue(
            "TYPESCRIPT_ERROR",
            "The build does not compile. Fix type errors before completing.",
        ))
    if not data.tests_written:
        issues.append(ValidationIssue(
            "NO_TESTS_WRITTEN",
            "No test files were reported for this feature.",
            Severity.WARNING,
        ))
    if safety_gates is not None:
        for gate, issue_type, call in ENHANCED_GATES:
            if not safety_gates.get(gate, False):
                issues.append(ValidationIssue(
                    issue_type,
                    f"{gate.value} was skipped. Call {call} earlier next time.",
                    Severity.WARNING,
                ))
    return issues


class EnforcementService:
    """Issues and validates pattern-discovery tokens."""

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        content: Optional[ContentProvider] = None,
        session_store: Optional[SessionStore] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        now: Callable[[], datetime] = utc_now,
    ):
        self._session_maker = session_maker
        self.content = content
        self.session_store = session_store
        self.ttl = timedelta(seconds=ttl_seconds)
        self._now = now

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        return self._session_maker or get_session_maker()

    # -------------------------------------------------------------------------
    # Start gate
    # -------------------------------------------------------------------------

    async def discover_patterns(
        self,
        task: str,
        keywords: Optional[Sequence[str]] = None,
        files: Optional[Sequence[str]] = None,
        project_hash: Optional[str] = None,
        project_name: Optional[str] = None,
        team_id: Optional[str] = None,
        safety_session_id: Optional[str] = None,
    ) -> dict:
        """
        Match guidance modules to a task and open an enforcement session.

        Returns:
            {sessionToken, sessionId, patterns, patternContents, keywords,
             hasExactMatch, relatedSuggestions?, expiresAt, message}
        """
        started = time.monotonic()
        files = list(files or [])
        search_text = " ".join([task] + files)

        matched = normalize_keywords(keywords or []) or extract_keywords(search_text)
        modules = modules_for_keywords(matched)
        has_exact_match = bool(modules)
        related = None
        if not has_exact_match:
            modules = list(DEFAULT_MODULES)
            related = suggest_categories(search_text)

        patterns = [CORE_MODULE] + [m for m in modules if m != CORE_MODULE]
        token = new_session_token()
        now = self._now()
        expires_at = now + self.ttl

        async with self.session_maker() as db:
            row = EnforcementSessionModel(
                session_token=token,
                team_id=team_id,
                project_hash=project_hash,
                project_name=project_name,
                safety_session_id=safety_session_id,
                task=task,
                planned_files=files,
                keywords=matched,
                patterns_returned=patterns,
                start_gate_passed=True,
                status=EnforcementStatus.ACTIVE.value,
                created_at=now,
                updated_at=now,
                expires_at=expires_at,
            )
            db.add(row)
            await db.flush()
            db.add(PatternDiscoveryModel(
                session_id=row.id,
                task=task,
                files=files,
                keywords=matched,
                patterns_matched=patterns,
                has_exact_match=has_exact_match,
                response_time_ms=int((time.monotonic() - started) * 1000),
            ))
            await db.commit()
            row_id = row.id

        logger.info("Issued %s for %r (%d patterns)", token, task[:60], len(patterns))

        result = {
            "sessionToken": token,
            "sessionId": row_id,
            "patterns": patterns,
            "patternContents": await asyncio.to_thread(self._contents, patterns),
            "keywords": matched,
            "hasExactMatch": has_exact_match,
            "expiresAt": expires_at.isoformat(),
            "message": (
                f"Loaded {len(patterns)} pattern modules. Call validate_complete "
                f"with this sessionToken when the feature is done."
            ),
        }
        if related is not None:
            result["relatedSuggestions"] = related
        return result

    def _contents(self, patterns: Sequence[str]) -> list[dict]:
        if self.content is None:
            return []
        contents = []
        for name in patterns:
            text = self.content.get(name)
            contents.append({"name": name, "found": text is not None, "content": text})
        return contents

    # -------------------------------------------------------------------------
    # End gate
    # -------------------------------------------------------------------------

    async def validate_complete(self, data: ValidateInput) -> dict:
        """Run the completion checklist against a token, at most once."""
        started = time.monotonic()
        async with self.session_maker() as db:
            row = await self._get_row(db, data.session_token)
            if row is None:
                return self._error_result(
                    ErrorKind.SESSION_NOT_FOUND,
                    "No enforcement session for this token. Call discover_patterns first.",
                    gates_skipped=["discover_patterns"],
                )

            if EnforcementStatus(row.status).is_terminal:
                return self._recorded_result(row)

            now = self._now()
            if now > _as_utc(row.expires_at):
                won = await self._transition(db, row.id, status=EnforcementStatus.EXPIRED.value, updated_at=now)
                if not won:
                    return await self._reread(db, row.id)
                await db.commit()
                logger.info("Token %s expired before validation", row.session_token)
                return self._expired_result()

            safety_id = data.safety_session_id or row.safety_session_id
            safety_gates = self._safety_gates(safety_id) if safety_id else None
            issues = build_checklist(data, row.start_gate_passed, safety_gates)
            passed = not any(i.severity is Severity.ERROR for i in issues)

            if safety_gates is None:
                score = 100 if row.start_gate_passed else 0
                skipped: list[str] = []
            else:
                followed = [row.start_gate_passed] + [safety_gates.get(g, False) for g, _, _ in ENHANCED_GATES]
                score = 25 * sum(1 for f in followed if f)
                skipped = [call for g, _, call in ENHANCED_GATES if not safety_gates.get(g, False)]

            status = EnforcementStatus.COMPLETED if passed else EnforcementStatus.FAILED
            wire_issues = to_wire(issues)
            won = await self._transition(
                db, row.id,
                status=status.value,
                end_gate_passed=passed,
                validation_issues=wire_issues,
                safety_score=score,
                tests_run=data.tests_run,
                tests_passed=data.tests_passed,
                typescript_passed=data.typescript_passed,
                updated_at=now,
                end_gate_at=now,
            )
            if not won:
                return await self._reread(db, row.id)

            db.add(PatternValidationModel(
                session_id=row.id,
                feature_name=data.feature_name,
                feature_description=data.feature_description,
                files_modified=list(data.files_modified),
                tests_written=list(data.tests_written),
                passed=passed,
                issues=wire_issues,
                safety_score=score,
                response_time_ms=int((time.monotonic() - started) * 1000),
            ))
            await db.commit()

        if passed and safety_id:
            self._mark_verified(safety_id)

        logger.info("Token %s %s (score %d)", data.session_token, status.value, score)
        return {
            "passed": passed,
            "status": status.value,
            "issues": wire_issues,
            "safetyScore": score,
            "safetyGatesSkipped": skipped,
            "sessionCompleted": passed,
            "alreadyValidated": False,
            "message": (
                "All checks passed. Feature complete." if passed
                else "Validation failed. Fix the errors and start a new session with discover_patterns."
            ),
        }

    async def _get_row(self, db: AsyncSession, token: str) -> Optional[EnforcementSessionModel]:
        result = await db.execute(
            select(EnforcementSessionModel)
            .where(EnforcementSessionModel.session_token == token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _transition(self, db: AsyncSession, row_id: int, **values) -> bool:
        """Move an active row to a terminal status. False if it was no longer active."""
        result = await db.execute(
            update(EnforcementSessionModel)
            .where(
                EnforcementSessionModel.id == row_id,
                EnforcementSessionModel.status == EnforcementStatus.ACTIVE.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _reread(self, db: AsyncSession, row_id: int) -> dict:
        # Another validator won the transition; report what it recorded
        await db.rollback()
        result = await db.execute(
            select(EnforcementSessionModel)
            .where(EnforcementSessionModel.id == row_id)
            .execution_options(populate_existing=True)
        )
        return self._recorded_result(result.scalar_one())

    def _recorded_result(self, row: EnforcementSessionModel) -> dict:
        status = EnforcementStatus(row.status)
        if status is EnforcementStatus.EXPIRED:
            return self._expired_result()
        passed = status is EnforcementStatus.COMPLETED
        return {
            "passed": passed,
            "status": status.value,
            "issues": list(row.validation_issues or []),
            "safetyScore": row.safety_score or 0,
            "safetyGatesSkipped": [],
            "sessionCompleted": passed,
            "alreadyValidated": True,
            "message": (
                "Already validated. Feature complete." if passed
                else "This token already failed validation. Start a new session with discover_patterns."
            ),
        }

    def _expired_result(self) -> dict:
        return self._error_result(
            ErrorKind.SESSION_EXPIRED,
            "Enforcement session expired. Call discover_patterns again.",
            status=EnforcementStatus.EXPIRED.value,
        )

    @staticmethod
    def _error_result(kind: ErrorKind, message: str, gates_skipped: Optional[list[str]] = None, status: Optional[str] = None) -> dict:
        return {
            "passed": False,
            "status": status,
            "error": kind.value,
            "issues": [ValidationIssue(kind.value, message).to_dict()],
            "safetyScore": 0,
            "safetyGatesSkipped": gates_skipped or [],
            "sessionCompleted": False,
            "alreadyValidated": False,
            "message": message,
        }

    def _safety_gates(self, safety_session_id: str) -> dict[Gate, bool]:
        if self.session_store is None:
            return {}
        with self.session_store.locked(safety_session_id) as session:
            if session is None:
                return {}
            return {gate: session.gates.is_set(gate) for gate in Gate}

    def _mark_verified(self, safety_session_id: str) -> None:
        if self.session_store is None:
            return
        with self.session_store.locked(safety_session_id) as session:
            if session is not None:
                session.gates.mark(Gate.VERIFICATION_PASSED)

    # -------------------------------------------------------------------------
    # Status and housekeeping
    # -------------------------------------------------------------------------

    async def get_session(self, token: str) -> Optional[dict]:
        """Read-only status of a token. Expiry is reported, not applied."""
        async with self.session_maker() as db:
            row = await self._get_row(db, token)
        if row is None:
            return None
        expires_at = _as_utc(row.expires_at)
        return {
            "sessionToken": row.session_token,
            "task": row.task,
            "status": row.status,
            "startGatePassed": row.start_gate_passed,
            "endGatePassed": row.end_gate_passed,
            "patterns": list(row.patterns_returned or []),
            "keywords": list(row.keywords or []),
            "plannedFiles": list(row.planned_files or []),
            "issues": list(row.validation_issues or []),
            "safetyScore": row.safety_score,
            "createdAt": _iso(row.created_at),
            "expiresAt": _iso(row.expires_at),
            "endGateAt": _iso(row.end_gate_at),
            "isExpired": row.status == EnforcementStatus.EXPIRED.value
            or (row.status == EnforcementStatus.ACTIVE.value and self._now() > expires_at),
        }

    async def expire_stale(self) -> int:
        """Mark every active token past its expiry as expired. Returns the count."""
        now = self._now()
        async with self.session_maker() as db:
            result = await db.execute(
                update(EnforcementSessionModel)
                .where(
                    EnforcementSessionModel.status == EnforcementStatus.ACTIVE.value,
                    EnforcementSessionModel.expires_at < now,
                )
                .values(status=EnforcementStatus.EXPIRED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        count = result.rowcount or 0
        if count:
            logger.info("Expired %d stale enforcement sessions", count)
        return count
