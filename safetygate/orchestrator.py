"""
Gate Orchestrator
=================

Read-only status view over a SafetySession: which gates have passed, what
to call next, and what has been recorded so far.
"""

from typing import Optional

from safetygate.gates import GateStatus, next_allowed, safety_score
from safetygate.session_store import SessionStore


class GateOrchestrator:
    """Builds get_status / get_safety_status responses."""

    def __init__(self, store: SessionStore):
        self.store = store

    def get_status(self, session_id: str) -> dict:
        """
        Status for a session. Never fails: an unknown session reports every
        gate as unmet and load_context as the next action.
        """
        with self.store.locked(session_id) as session:
            if session is None:
                gates = GateStatus()
                return {
                    "sessionId": session_id,
                    "exists": False,
                    "gates": gates.to_dict(),
                    "nextAction": next_allowed(gates),
                    "safetyScore": 0,
                    "violations": [],
                    "contradictionsFound": 0,
                    "attemptsLogged": 0,
                    "decisionsLogged": 0,
                    "scopeLock": None,
                }
            next_action: Optional[str] = next_allowed(session.gates)
            return {
                "sessionId": session_id,
                "exists": True,
                "gates": session.gates.to_dict(),
                "nextAction": next_action,
                "safetyScore": safety_score(session.gates),
                "violations": [v.to_dict() for v in session.violations],
                "contradictionsFound": len(session.contradictions),
                "attemptsLogged": len(session.attempts),
                "decisionsLogged": len(session.decisions),
                "scopeLock": session.scope_lock.to_dict() if session.scope_lock else None,
                "message": (
                    "All safety gates passed." if next_action is None
                    else f"Next required step: {next_action}"
                ),
            }
