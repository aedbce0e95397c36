"""
SafetyGate
==========

Enforcement gates for AI coding assistants: load project memory, clarify
intent, lock scope, block contradicting or out-of-scope actions, track
tried approaches, and bracket each feature with a discover/validate token.
"""

from safetygate.config import SafetyConfig
from safetygate.errors import ErrorKind, MalformedInput
from safetygate.service import SafetyService

__version__ = "0.1.0"

__all__ = ["SafetyConfig", "SafetyService", "ErrorKind", "MalformedInput", "__version__"]
