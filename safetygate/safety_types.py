"""
Safety Types
============

Shared record types for the gate system: decisions, attempts, blockers,
scope locks, confidence scores, contradictions and validation issues.

Records serialize to camelCase dicts with `to_dict()` so HTTP and MCP
responses use one wire format.
"""

import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# =============================================================================
# Enums
# =============================================================================

class DecisionCategory(Enum):
    ARCHITECTURE = "architecture"
    TECH_STACK = "tech-stack"
    PATTERNS = "patterns"
    SECURITY = "security"
    DATA_MODEL = "data-model"
    API_DESIGN = "api-design"
    UI_DESIGN = "ui-design"
    INTEGRATION = "integration"
    DEPLOYMENT = "deployment"
    BUSINESS_LOGIC = "business-logic"


class Impact(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _IMPACT_RANK[self]


_IMPACT_RANK = {Impact.LOW: 0, Impact.MEDIUM: 1, Impact.HIGH: 2, Impact.CRITICAL: 3}


class MadeBy(Enum):
    USER = "user"
    AI = "ai"


class AttemptResult(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class ActionType(Enum):
    CREATE_FILE = "create-file"
    MODIFY_FILE = "modify-file"
    DELETE_FILE = "delete-file"
    ADD_DEPENDENCY = "add-dependency"
    REMOVE_DEPENDENCY = "remove-dependency"
    RUN_COMMAND = "run-command"
    MODIFY_CONFIG = "modify-config"


class BlockerCategory(Enum):
    ERROR = "error"
    MISSING_INFO = "missing-info"
    WAITING_EXTERNAL = "waiting-external"
    NEEDS_DECISION = "needs-decision"


class BlockerStatus(Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    BYPASSED = "bypassed"


class EnforcementStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not EnforcementStatus.ACTIVE


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


class Priority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_ORDER = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


# =============================================================================
# Helpers
# =============================================================================

def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def short_id(prefix: str) -> str:
    """Generate a short prefixed id such as D-1a2b3c4d."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_wire(value: Any) -> Any:
    """Recursively convert dataclasses/enums/tuples to JSON-ready camelCase data."""
    if is_dataclass(value) and not isinstance(value, type):
        return {camel_case(f.name): to_wire(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    if isinstance(value, dict):
        return {k: to_wire(v) for k, v in value.items()}
    return value


class WireMixin:
    """Adds camelCase `to_dict()` to a dataclass."""

    def to_dict(self) -> dict:
        return to_wire(self)


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class Decision(WireMixin):
    """A recorded project decision. Immutable once appended to a ledger."""
    id: str
    timestamp: str
    decision: str
    category: DecisionCategory
    reasoning: str
    impact: Impact
    alternatives_considered: tuple[str, ...] = ()
    reversible: bool = True
    made_by: MadeBy = MadeBy.AI
    user_approved: bool = False
    related_files: tuple[str, ...] = ()

    @property
    def is_critical(self) -> bool:
        return self.impact.rank >= Impact.HIGH.rank


@dataclass(frozen=True)
class Attempt(WireMixin):
    """One tried approach to an issue."""
    id: str
    timestamp: str
    issue: str
    approach: str
    code_or_command: str
    result: AttemptResult
    signature: str
    should_not_retry: bool = False
    error_message: Optional[str] = None
    lessons_learned: Optional[str] = None


@dataclass
class Blocker(WireMixin):
    """Something stopping progress."""
    id: str
    created_at: str
    description: str
    category: BlockerCategory = BlockerCategory.ERROR
    error_message: Optional[str] = None
    attempts_made: list[str] = field(default_factory=list)
    status: BlockerStatus = BlockerStatus.ACTIVE


@dataclass(frozen=True)
class FileChange(WireMixin):
    """A file change recorded in the development log."""
    date: str
    file: str
    change: str


@dataclass(frozen=True)
class Violation(WireMixin):
    """A blocked action recorded against a scope lock."""
    action_type: str
    target_file: str
    reason: str
    timestamp: str


@dataclass
class ScopeLock(WireMixin):
    """What the assistant may touch for one request."""
    id: str
    created_at: str
    user_request: str
    allowed_actions: list[ActionType]
    allowed_directories: list[str]
    forbidden_files: list[str]
    violations: list[Violation] = field(default_factory=list)

    def record_violation(self, violation: Violation) -> None:
        # append-only
        self.violations.append(violation)


@dataclass(frozen=True)
class ConfidenceScore(WireMixin):
    field: str
    value: Optional[str]
    confidence: int
    reasoning: str
    needs_clarification: bool


@dataclass(frozen=True)
class ClarificationQuestion(WireMixin):
    id: str
    field: str
    question: str
    options: tuple[str, ...] = ()
    required: bool = False
    priority: Priority = Priority.MEDIUM


@dataclass(frozen=True)
class Contradiction(WireMixin):
    """A proposed action that conflicts with a high-impact decision."""
    proposed_action: str
    conflicting_decision: Decision
    subject: str
    decided_choice: str
    proposed_choice: str
    explanation: str
    severity: Impact


@dataclass(frozen=True)
class ValidationIssue(WireMixin):
    type: str
    message: str
    severity: Severity = Severity.ERROR


@dataclass
class ProjectContext(WireMixin):
    """Project history assembled by the context loader."""
    project_name: str
    project_hash: str
    project_path: Optional[str] = None
    current_task: Optional[str] = None
    current_phase: str = "development"
    stack: dict[str, str] = field(default_factory=dict)
    built_features: list[str] = field(default_factory=list)
    pending_features: list[str] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    attempts: list[Attempt] = field(default_factory=list)
    active_blockers: list[Blocker] = field(default_factory=list)
    recent_changes: list[FileChange] = field(default_factory=list)
    loaded_at: str = field(default_factory=now_iso)

    @property
    def critical_decisions(self) -> list[Decision]:
        return [d for d in self.decisions if d.is_critical]

    @property
    def failed_attempts(self) -> list[Attempt]:
        return [a for a in self.attempts if a.result is AttemptResult.FAILURE]

    def summary(self) -> dict:
        """Compact view returned by load_context."""
        return {
            "projectName": self.project_name,
            "projectHash": self.project_hash,
            "currentTask": self.current_task,
            "currentPhase": self.current_phase,
            "stack": dict(self.stack),
            "builtFeatures": list(self.built_features),
            "decisionCount": len(self.decisions),
            "attemptCount": len(self.attempts),
            "activeBlockerCount": len(self.active_blockers),
            "recentChanges": to_wire(self.recent_changes[:10]),
            "loadedAt": self.loaded_at,
        }
