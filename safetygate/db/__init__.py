"""
Database Package
================

Exports key database components.
"""

from safetygate.db.models import (
    Base,
    EnforcementSessionModel,
    PatternDiscoveryModel,
    PatternValidationModel,
)
from safetygate.db.connection import init_db, get_session_maker, dispose_db
