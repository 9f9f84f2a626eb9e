"""
Database Package
================

Exports key database components.
"""

from codeforge_agent.db.models import (
    Base,
    AuditEntryModel,
    LearningPatternModel,
    OODACycleModel,
)
from codeforge_agent.db.connection import init_db, get_session_maker, close_db
