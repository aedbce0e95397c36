"""
Session Store
=============

In-memory state for each assistant conversation (a SafetySession), keyed by
the caller's session id and kept for the life of the process.

Every read-modify-write on a session runs under that session's own lock:

    with store.locked(session_id, create=True) as session:
        session.scope_lock = lock
        session.gates.mark(Gate.SCOPE_LOCKED)

A registry lock guards only the creation and removal of per-session entries,
so work on one session never waits on another. Callers must not await or do
file I/O while holding a session lock.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, Optional

from safetygate.attempt_tracker import AttemptLog
from safetygate.decision_log import DecisionLedger
from safetygate.gates import GateStatus
from safetygate.safety_types import Contradiction, ProjectContext, ScopeLock, Violation, now_iso

if TYPE_CHECKING:
    from safetygate.intent import IntentState


@dataclass
class SafetySession:
    """Per-conversation gate state."""
    session_id: str
    project_hash: Optional[str] = None
    gates: GateStatus = field(default_factory=GateStatus)
    decisions: DecisionLedger = field(default_factory=DecisionLedger)
    attempts: AttemptLog = field(default_factory=AttemptLog)
    scope_lock: Optional[ScopeLock] = None
    context: Optional[ProjectContext] = None
    intent: Optional["IntentState"] = None
    contradictions: list[Contradiction] = field(default_factory=list)
    calls_made: set[str] = field(default_factory=set)
    created_at: str = field(default_factory=now_iso)

    @property
    def violations(self) -> list[Violation]:
        return list(self.scope_lock.violations) if self.scope_lock else []

    def record_call(self, tool: str) -> None:
        self.calls_made.add(tool)

    def reset_gates(self) -> None:
        """Explicitly clear every gate. Logs and violations are kept."""
        self.gates.reset()
        self.calls_made.clear()


class SessionStore:
    """Interface for SafetySession storage."""

    def create(self, session_id: str) -> SafetySession:
        raise NotImplementedError

    def get(self, session_id: str) -> Optional[SafetySession]:
        raise NotImplementedError

    def get_or_create(self, session_id: str) -> SafetySession:
        raise NotImplementedError

    def evict(self, session_id: str) -> bool:
        raise NotImplementedError

    def session_ids(self) -> list[str]:
        raise NotImplementedError

    def locked(self, session_id: str, create: bool = False):
        """Context manager yielding the session under its lock."""
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    """Process-local store with one re-entrant lock per session."""

    def __init__(self):
        self._sessions: dict[str, SafetySession] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[session_id] = lock
            return lock

    def create(self, session_id: str) -> SafetySession:
        """Create (or replace) a session. Replacing starts from fresh gates."""
        with self._lock_for(session_id):
            session = SafetySession(session_id=session_id)
            with self._registry_lock:
                self._sessions[session_id] = session
            return session

    def get(self, session_id: str) -> Optional[SafetySession]:
        with self._registry_lock:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> SafetySession:
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = SafetySession(session_id=session_id)
                self._sessions[session_id] = session
            return session

    def evict(self, session_id: str) -> bool:
        # The lock entry stays: threads already waiting on it must serialize
        # with any caller that recreates the session
        with self._lock_for(session_id):
            with self._registry_lock:
                return self._sessions.pop(session_id, None) is not None

    def session_ids(self) -> list[str]:
        with self._registry_lock:
            return list(self._sessions)

    @contextmanager
    def locked(self, session_id: str, create: bool = False) -> Iterator[Optional[SafetySession]]:
        """
        Hold the session's lock for a read-modify-write.

        Args:
            session_id: Caller supplied session id
            create: Create the session if it does not exist

        Yields:
            The session, or None if it does not exist and create is False
        """
        with self._lock_for(session_id):
            session = self.get_or_create(session_id) if create else self.get(session_id)
            yield session

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._sessions)
