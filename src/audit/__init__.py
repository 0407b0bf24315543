"""Approval Flow: Audit Trail.

Fire-and-forget recording of workflow stage transitions, with an
in-memory destination and a query builder over it.
"""

from .config import (
    AuditAction,
    AuditConfig,
)
from .events import AuditRecord
from .sink import (
    AuditDestination,
    AuditError,
    AuditSink,
)
from .store import InMemoryAuditStore
from .query import AuditQuery

__all__ = [
    # Config
    "AuditAction",
    "AuditConfig",
    # Records
    "AuditRecord",
    # Core
    "AuditDestination",
    "AuditError",
    "AuditSink",
    "InMemoryAuditStore",
    "AuditQuery",
]
