"""
Gate State Machine
==================

Declares, in one table, which calls each tool requires, which gates it
recommends, and which gates it sets when it succeeds.

Hard prerequisites (`requires_calls`) block a call with a GATE_VIOLATION.
Recommended gates only add warnings: the assistant is told what it skipped
but is never stopped for it.

Usage:
    check = check_transition(session.gates, session.calls_made, "define_scope")
    if not check.allowed:
        return blocked_response(ErrorKind.GATE_VIOLATION, ...)
    ...
    next_call = next_allowed(session.gates)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional


class Gate(Enum):
    CONTEXT_LOADED = "contextLoaded"
    INTENT_CLARIFIED = "intentClarified"
    CONTRADICTIONS_CHECKED = "contradictionsChecked"
    SCOPE_LOCKED = "scopeLocked"
    PATTERNS_LOADED = "patternsLoaded"
    IMPLEMENTATION_STARTED = "implementationStarted"
    VERIFICATION_PASSED = "verificationPassed"
    DOCUMENTATION_UPDATED = "documentationUpdated"


# Priority walk for next_allowed: gate -> the call that satisfies it
GATE_ORDER: tuple[tuple[Gate, str], ...] = (
    (Gate.CONTEXT_LOADED, "load_context"),
    (Gate.INTENT_CLARIFIED, "clarify_intent"),
    (Gate.CONTRADICTIONS_CHECKED, "check_action"),
    (Gate.SCOPE_LOCKED, "define_scope"),
    (Gate.PATTERNS_LOADED, "discover_patterns"),
    (Gate.VERIFICATION_PASSED, "validate_complete"),
)

# Gates that count toward the 0-100 safety score (25 each)
SCORED_GATES = (
    Gate.CONTEXT_LOADED,
    Gate.INTENT_CLARIFIED,
    Gate.SCOPE_LOCKED,
    Gate.PATTERNS_LOADED,
)


@dataclass(frozen=True)
class ToolRule:
    requires_calls: tuple[str, ...] = ()
    recommends_gates: tuple[Gate, ...] = ()
    sets_gates: tuple[Gate, ...] = ()


TRANSITIONS: dict[str, ToolRule] = {
    "load_context": ToolRule(sets_gates=(Gate.CONTEXT_LOADED,)),
    "clarify_intent": ToolRule(
        recommends_gates=(Gate.CONTEXT_LOADED,),
        sets_gates=(Gate.INTENT_CLARIFIED,),
    ),
    "answer_clarification": ToolRule(
        requires_calls=("clarify_intent",),
        sets_gates=(Gate.INTENT_CLARIFIED,),
    ),
    "define_scope": ToolRule(
        recommends_gates=(Gate.CONTEXT_LOADED, Gate.INTENT_CLARIFIED),
        sets_gates=(Gate.SCOPE_LOCKED,),
    ),
    "check_action": ToolRule(
        recommends_gates=(Gate.CONTEXT_LOADED,),
        sets_gates=(Gate.CONTRADICTIONS_CHECKED,),
    ),
    "log_attempt": ToolRule(),
    "log_decision": ToolRule(sets_gates=(Gate.DOCUMENTATION_UPDATED,)),
    "get_status": ToolRule(),
    "discover_patterns": ToolRule(
        recommends_gates=(Gate.CONTEXT_LOADED, Gate.INTENT_CLARIFIED, Gate.SCOPE_LOCKED),
        sets_gates=(Gate.PATTERNS_LOADED,),
    ),
    "validate_complete": ToolRule(
        recommends_gates=(Gate.PATTERNS_LOADED,),
        sets_gates=(Gate.VERIFICATION_PASSED,),
    ),
}

GATE_HINTS = {
    Gate.CONTEXT_LOADED: "Project context not loaded. Call load_context first to see past decisions and failed attempts.",
    Gate.INTENT_CLARIFIED: "Intent not clarified. Call clarify_intent so requirements are confirmed before building.",
    Gate.CONTRADICTIONS_CHECKED: "No action checked against recorded decisions yet. Call check_action before editing.",
    Gate.SCOPE_LOCKED: "No scope lock. Call define_scope to fix which files may be touched.",
    Gate.PATTERNS_LOADED: "Patterns not discovered. Call discover_patterns to get a session token.",
    Gate.VERIFICATION_PASSED: "Work not validated. Call validate_complete with test results.",
}


class GateStatus:
    """Eight monotonic gate flags. Only reset() clears them."""

    def __init__(self):
        self._passed: set[Gate] = set()

    def is_set(self, gate: Gate) -> bool:
        return gate in self._passed

    def mark(self, gate: Gate) -> bool:
        """Set a gate. Returns True if it was newly set."""
        if gate in self._passed:
            return False
        self._passed.add(gate)
        return True

    def mark_all(self, gates: Iterable[Gate]) -> None:
        for gate in gates:
            self.mark(gate)

    def reset(self) -> None:
        self._passed.clear()

    def to_dict(self) -> dict[str, bool]:
        return {gate.value: gate in self._passed for gate in Gate}


@dataclass
class TransitionCheck:
    allowed: bool
    missing_calls: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def check_transition(gates: GateStatus, calls_made: Iterable[str], tool: str) -> TransitionCheck:
    """
    Decide whether `tool` may run given the gates and the calls already made.

    Unknown tools are allowed with no warnings.
    """
    rule = TRANSITIONS.get(tool)
    if rule is None:
        return TransitionCheck(allowed=True)

    made = set(calls_made)
    missing = [call for call in rule.requires_calls if call not in made]
    warnings = [GATE_HINTS[g] for g in rule.recommends_gates if not gates.is_set(g)]
    return TransitionCheck(allowed=not missing, missing_calls=missing, warnings=warnings)


def next_allowed(gates: GateStatus) -> Optional[str]:
    """The call that satisfies the first unmet gate, or None when all are met."""
    for gate, call in GATE_ORDER:
        if not gates.is_set(gate):
            return call
    return None


def safety_score(gates: GateStatus) -> int:
    return 25 * sum(1 for g in SCORED_GATES if gates.is_set(g))
