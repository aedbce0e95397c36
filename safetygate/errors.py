"""
Error Kinds
===========

Policy outcomes (gate violations, scope violations, contradictions, failed
validation) are returned as structured responses, never raised. The only
exception that reaches a caller is MalformedInput, which the HTTP surface
maps to a 400.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    """Categories of structured error responses."""
    GATE_VIOLATION = "GATE_VIOLATION"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SCOPE_VIOLATION = "SCOPE_VIOLATION"
    CONTRADICTION = "CONTRADICTION"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    MALFORMED_INPUT = "MALFORMED_INPUT"
    UNKNOWN_QUESTION = "UNKNOWN_QUESTION"


class SafetyError(Exception):
    """Base class for safetygate exceptions."""


class MalformedInput(SafetyError):
    """A request is missing required fields or has fields of the wrong type."""

    def __init__(self, message: str, details: Optional[list[Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        return {
            "error": ErrorKind.MALFORMED_INPUT.value,
            "message": self.message,
            "details": self.details,
        }


def blocked_response(kind: ErrorKind, reason: str, **extra: Any) -> dict:
    """
    Build the structured body for a blocked or refused call.

    Args:
        kind: The error kind
        reason: Human-readable explanation
        **extra: Additional response fields (nextAction, missing, ...)

    Returns:
        Response dict with success/allowed false and blocked true
    """
    response = {
        "success": False,
        "allowed": False,
        "blocked": True,
        "error": kind.value,
        "reason": reason,
    }
    response.update(extra)
    return response
