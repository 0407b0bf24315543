"""Configuration for the workflow audit trail."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AuditAction(str, Enum):
    """Action tags emitted by the approval workflow."""

    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_FULFILLED = "workflow_fulfilled"
    WORKFLOW_FAILED = "workflow_failed"
    WORKFLOW_ABORTED = "workflow_aborted"


@dataclass
class AuditConfig:
    """Master configuration for the audit side-channel."""

    enabled: bool = True
    # Records beyond this many in flight are dropped (emit never blocks).
    queue_maxsize: int = 10_000
    log_to_console: bool = False
    dispatcher_name: str = "audit-dispatcher"
    stop_timeout_seconds: float = 5.0
    # In-memory store retention.
    max_records_per_work_item: Optional[int] = 1_000
    retention_seconds: Optional[float] = 7 * 24 * 3600.0
