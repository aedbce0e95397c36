"""
Safety Service
==============

Single entry point for every gate call. Wires the session store, context
loader, intent clarifier, scope lock engine, decision ledger, attempt
tracker and enforcement token service together, and applies the gate
table in safetygate.gates around each call.

Policy outcomes (blocked actions, contradictions, failed validation) come
back as structured dicts. Only MalformedInput is raised.

Usage:
    service = SafetyService(SafetyConfig.load())
    await service.dispatch("load_context", {"sessionId": "s1", "projectPath": "."})
    await service.dispatch("check_action", {
        "sessionId": "s1",
        "action": "Edit the login form",
        "actionType": "modify-file",
        "targetFile": "src/components/LoginForm.tsx",
    })
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from safetygate.attempt_tracker import AttemptTracker
from safetygate.config import SafetyConfig
from safetygate.context_loader import ContextLoader, format_context_for_prompt
from safetygate.decision_log import ContradictionDetector, decision_to_markdown
from safetygate.enforcement import EnforcementService, ValidateInput, utc_now
from safetygate.errors import ErrorKind, MalformedInput, blocked_response
from safetygate.gates import TRANSITIONS, Gate, GateStatus, check_transition, next_allowed
from safetygate.intent import IntentClarifier
from safetygate.matchers import TokenOverlapMatcher
from safetygate.orchestrator import GateOrchestrator
from safetygate.patterns import ContentProvider, DirectoryContentProvider
from safetygate.safety_types import (
    ActionType,
    AttemptResult,
    DecisionCategory,
    Impact,
    MadeBy,
    to_wire,
)
from safetygate.schemas import (
    ACTION_MODELS,
    AnswerClarificationRequest,
    CheckActionRequest,
    ClarifyIntentRequest,
    DefineScopeRequest,
    DiscoverPatternsRequest,
    GetStatusRequest,
    LoadContextRequest,
    LogAttemptRequest,
    LogDecisionRequest,
    ValidateCompleteRequest,
)
from safetygate.scope_lock import check_action as check_scope, create_scope_lock, format_for_display
from safetygate.session_store import InMemorySessionStore, SafetySession, SessionStore

logger = logging.getLogger(__name__)

IMPLEMENTATION_ACTIONS = (ActionType.CREATE_FILE.value, ActionType.MODIFY_FILE.value)


class SafetyService:
    """Dispatches gate calls against one session store and one token database."""

    _HANDLERS = {
        "load_context": "load_context",
        "clarify_intent": "clarify_intent",
        "answer_clarification": "answer_clarification",
        "define_scope": "define_scope",
        "check_action": "check_action",
        "log_attempt": "log_attempt",
        "log_decision": "log_decision",
        "get_status": "get_status",
        "get_safety_status": "get_status",
        "discover_patterns": "discover_patterns",
        "validate_complete": "validate_complete",
    }

    def __init__(
        self,
        config: Optional[SafetyConfig] = None,
        store: Optional[SessionStore] = None,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        content: Optional[ContentProvider] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config or SafetyConfig()
        self.store = store or InMemorySessionStore()
        self.loader = ContextLoader(self.config)
        self.clarifier = IntentClarifier(
            ready_threshold=self.config.intent_ready_threshold,
            max_rounds=self.config.intent_max_rounds,
        )
        self.detector = ContradictionDetector()
        self.tracker = AttemptTracker(
            TokenOverlapMatcher(threshold=self.config.attempt_similarity_threshold),
            failure_limit=self.config.attempt_failure_limit,
        )
        self.orchestrator = GateOrchestrator(self.store)
        if content is None and self.config.content_dir:
            content = DirectoryContentProvider(Path(self.config.content_dir), self.config.context_max_bytes)
        self.enforcement = EnforcementService(
            session_maker=session_maker,
            content=content,
            session_store=self.store,
            ttl_seconds=self.config.session_ttl_seconds,
            now=now,
        )

    @property
    def actions(self) -> list[str]:
        return sorted(self._HANDLERS)

    async def dispatch(self, action: Optional[str], payload: dict[str, Any]) -> dict:
        """
        Validate a payload for an action and run it.

        Raises:
            MalformedInput: unknown action, or payload failing its schema
        """
        if not action or action not in self._HANDLERS:
            raise MalformedInput(
                f"Unknown or missing action: {action!r}",
                details=[{"allowedActions": self.actions}],
            )
        try:
            request = ACTION_MODELS[action].model_validate(payload)
        except ValidationError as e:
            raise MalformedInput(
                f"Invalid input for {action}",
                details=json.loads(e.json(include_url=False)),
            ) from e
        handler = getattr(self, self._HANDLERS[action])
        return await handler(request)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _complete(session: SafetySession, tool: str, succeeded: bool = True) -> None:
        session.record_call(tool)
        if succeeded:
            session.gates.mark_all(TRANSITIONS[tool].sets_gates)

    @staticmethod
    def _progress(session: SafetySession) -> dict:
        return {
            "gates": session.gates.to_dict(),
            "nextAction": next_allowed(session.gates),
        }

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    async def load_context(self, req: LoadContextRequest) -> dict:
        inline = (
            req.state_json, req.decisions_content, req.attempts_content,
            req.blocked_content, req.devlog_content,
        )
        # File I/O happens before the session lock is taken
        if req.project_path is not None or not any(inline):
            result = await self.loader.load(req.project_path or os.getcwd())
        else:
            result = self.loader.load_from_content(
                state_json=req.state_json,
                decisions=req.decisions_content,
                attempts=req.attempts_content,
                blocked=req.blocked_content,
                devlog=req.devlog_content,
            )

        with self.store.locked(req.session_id, create=True) as session:
            if not result.success:
                self._complete(session, "load_context", succeeded=False)
                logger.info("Context load failed for %s: %s", req.session_id, "; ".join(result.errors))
                return {
                    "success": False,
                    "sessionId": req.session_id,
                    "errors": result.errors,
                    "warnings": result.warnings,
                    **self._progress(session),
                }

            context = result.context
            session.context = context
            session.project_hash = context.project_hash
            session.decisions.extend_loaded(context.decisions)
            session.attempts.extend_loaded(context.attempts)
            self._complete(session, "load_context")
            return {
                "success": True,
                "sessionId": req.session_id,
                "context": context.summary(),
                "criticalDecisions": to_wire(context.critical_decisions),
                "failedApproaches": to_wire(context.failed_attempts),
                "activeBlockers": to_wire(context.active_blockers),
                "warnings": result.warnings,
                "formatted": format_context_for_prompt(context),
                **self._progress(session),
            }

    async def clarify_intent(self, req: ClarifyIntentRequest) -> dict:
        state = self.clarifier.start(req.user_request)
        with self.store.locked(req.session_id, create=True) as session:
            check = check_transition(session.gates, session.calls_made, "clarify_intent")
            session.intent = state
            self._complete(session, "clarify_intent", succeeded=state.ready_to_proceed)
            response = {
                "success": True,
                "sessionId": req.session_id,
                **state.to_dict(),
                "warnings": check.warnings,
                **self._progress(session),
            }
        if state.ready_to_proceed:
            response["summary"] = self.clarifier.confirmation_summary(state)
        return response

    async def answer_clarification(self, req: AnswerClarificationRequest) -> dict:
        with self.store.locked(req.session_id) as session:
            gates = session.gates if session else GateStatus()
            calls = session.calls_made if session else set()
            check = check_transition(gates, calls, "answer_clarification")
            if session is None or not check.allowed or session.intent is None:
                return blocked_response(
                    ErrorKind.GATE_VIOLATION,
                    "answer_clarification requires clarify_intent first.",
                    missing=check.missing_calls or ["clarify_intent"],
                    nextAction="clarify_intent",
                )

            state = session.intent
            if not self.clarifier.has_question(state, req.question_id):
                return blocked_response(
                    ErrorKind.UNKNOWN_QUESTION,
                    f"No pending question with id '{req.question_id}'.",
                    pendingQuestions=[q.id for q in state.pending],
                )

            self.clarifier.answer(state, req.question_id, req.answer)
            self._complete(session, "answer_clarification", succeeded=state.ready_to_proceed)
            return {
                "success": True,
                "sessionId": req.session_id,
                "readyToProceed": state.ready_to_proceed,
                "overallConfidence": state.overall_confidence,
                "remainingQuestions": to_wire(state.pending),
                "exhausted": state.exhausted,
                "summary": self.clarifier.confirmation_summary(state),
                **self._progress(session),
            }

    async def define_scope(self, req: DefineScopeRequest) -> dict:
        lock = create_scope_lock(req.user_request, req.allowed_directories, req.forbidden_files)
        with self.store.locked(req.session_id, create=True) as session:
            check = check_transition(session.gates, session.calls_made, "define_scope")
            if session.scope_lock is not None:
                # violations survive a re-scope
                lock.violations.extend(session.scope_lock.violations)
            session.scope_lock = lock
            self._complete(session, "define_scope")
            return {
                "success": True,
                "sessionId": req.session_id,
                "scopeLockId": lock.id,
                "summary": format_for_display(lock),
                "scopeLock": lock.to_dict(),
                "warnings": check.warnings,
                **self._progress(session),
            }

    async def check_action(self, req: CheckActionRequest) -> dict:
        action_type = req.action_type or ""
        with self.store.locked(req.session_id, create=True) as session:
            check = check_transition(session.gates, session.calls_made, "check_action")
            warnings = list(check.warnings)
            session.record_call("check_action")

            contradiction = self.detector.check(req.action, session.decisions.entries)
            if contradiction is not None:
                session.contradictions.append(contradiction)
                logger.info("Blocked %r: contradicts %s", req.action, contradiction.conflicting_decision.id)
                return blocked_response(
                    ErrorKind.CONTRADICTION,
                    contradiction.explanation,
                    contradiction=contradiction.to_dict(),
                    warnings=warnings,
                )

            if session.scope_lock is None:
                warnings.append("No scope defined. Call define_scope to lock which files may change.")
            else:
                scope = check_scope(session.scope_lock, action_type, req.target_file)
                if scope.warning:
                    warnings.append(scope.warning)
                if not scope.allowed:
                    session.scope_lock.record_violation(scope.violation)
                    logger.info("Blocked %s on %s: %s", action_type, req.target_file, scope.reason)
                    return blocked_response(
                        ErrorKind.SCOPE_VIOLATION,
                        scope.reason,
                        violation=scope.violation.to_dict(),
                        warnings=warnings,
                    )

            self._complete(session, "check_action")
            if action_type in IMPLEMENTATION_ACTIONS:
                session.gates.mark(Gate.IMPLEMENTATION_STARTED)

            response = {
                "success": True,
                "allowed": True,
                "blocked": False,
                "sessionId": req.session_id,
            }

            attempts = session.attempts.entries
            if req.issue:
                tried = self.tracker.has_been_tried(req.issue, req.action, attempts)
                repeated = [tried.previous_attempt] if (
                    tried.already_tried and tried.previous_attempt.result is AttemptResult.FAILURE
                ) else []
            else:
                repeated = self.tracker.approach_failures(req.action, attempts)
            if repeated:
                previous = repeated[-1]
                warnings.append(
                    f"A similar approach already failed for '{previous.issue}'"
                    + (f": {previous.error_message}" if previous.error_message else "")
                )
                response["previousAttempt"] = previous.to_dict()
                response["suggestedAlternatives"] = self.tracker.suggest_alternatives(previous.issue, attempts)

            response["warning"] = " ".join(warnings) if warnings else None
            response["warnings"] = warnings
            response.update(self._progress(session))
            return response

    async def log_attempt(self, req: LogAttemptRequest) -> dict:
        result = AttemptResult(req.result)
        with self.store.locked(req.session_id, create=True) as session:
            prior = session.attempts.entries
            tried = self.tracker.has_been_tried(req.issue, req.approach, prior)
            attempt = self.tracker.create_attempt(
                issue=req.issue,
                approach=req.approach,
                code_or_command=req.code_or_command,
                result=result,
                prior=prior,
                error_message=req.error_message,
                lessons_learned=req.lessons_learned,
            )
            session.attempts.append(attempt)
            self._complete(session, "log_attempt")
            alternatives = []
            if result is not AttemptResult.SUCCESS:
                alternatives = self.tracker.suggest_alternatives(req.issue, session.attempts.entries)
            return {
                "success": True,
                "sessionId": req.session_id,
                "attemptId": attempt.id,
                "wasAlreadyTried": tried.already_tried,
                "shouldNotRetry": attempt.should_not_retry,
                "recommendation": tried.recommendation,
                "suggestedAlternatives": alternatives,
            }

    async def log_decision(self, req: LogDecisionRequest) -> dict:
        with self.store.locked(req.session_id, create=True) as session:
            contradiction = self.detector.check(req.decision, session.decisions.entries)
            decision = session.decisions.append(
                decision=req.decision,
                category=DecisionCategory(req.category),
                reasoning=req.reasoning,
                impact=Impact(req.impact),
                alternatives_considered=req.alternatives_considered,
                reversible=req.reversible,
                made_by=MadeBy(req.made_by),
                user_approved=req.user_approved,
                related_files=req.related_files,
            )
            if contradiction is not None:
                session.contradictions.append(contradiction)
            self._complete(session, "log_decision")
            response = {
                "success": True,
                "sessionId": req.session_id,
                "decisionId": decision.id,
                "hasContradiction": contradiction is not None,
                "contradiction": contradiction.to_dict() if contradiction else None,
                "markdown": decision_to_markdown(decision),
            }
        if contradiction is not None:
            response["warning"] = (
                f"This decision conflicts with an earlier one: {contradiction.explanation} "
                "Confirm with the user which one stands."
            )
        return response

    async def get_status(self, req: GetStatusRequest) -> dict:
        return self.orchestrator.get_status(req.session_id)

    async def discover_patterns(self, req: DiscoverPatternsRequest) -> dict:
        warnings: list[str] = []
        if req.safety_session_id:
            with self.store.locked(req.safety_session_id, create=True) as session:
                warnings = check_transition(session.gates, session.calls_made, "discover_patterns").warnings

        result = await self.enforcement.discover_patterns(
            task=req.task,
            keywords=req.keywords,
            files=req.files,
            project_hash=req.project_hash,
            project_name=req.project_name,
            team_id=req.team_id,
            safety_session_id=req.safety_session_id,
        )

        if req.safety_session_id:
            with self.store.locked(req.safety_session_id, create=True) as session:
                self._complete(session, "discover_patterns")
        result["warnings"] = warnings
        return result

    async def validate_complete(self, req: ValidateCompleteRequest) -> dict:
        result = await self.enforcement.validate_complete(ValidateInput(
            session_token=req.session_token,
            feature_name=req.feature_name,
            feature_description=req.feature_description,
            files_modified=req.files_modified,
            tests_written=req.tests_written,
            tests_run=req.tests_run,
            tests_passed=req.tests_passed,
            typescript_passed=req.typescript_passed,
            safety_session_id=req.safety_session_id,
        ))
        if req.safety_session_id:
            with self.store.locked(req.safety_session_id) as session:
                if session is not None:
                    session.record_call("validate_complete")
        return result

    # -------------------------------------------------------------------------
    # Session management
    # -------------------------------------------------------------------------

    def reset_session(self, session_id: str) -> bool:
        """Explicitly clear a session's gates. Returns False for unknown sessions."""
        with self.store.locked(session_id) as session:
            if session is None:
                return False
            session.reset_gates()
            return True
