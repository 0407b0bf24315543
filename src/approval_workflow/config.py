"""Approval Flow: Approval Workflow - Configuration."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class WorkflowStatus(str, Enum):
    """Status of a workflow run."""

    UNDER_REVIEW = "under-review"
    APPROVED = "approved"
    REJECTED = "rejected"
    FULFILLED = "fulfilled"
    FAILED = "failed"


class StageName(str, Enum):
    """Node names of the approval pipeline."""

    STAGE_A = "stageA"
    STAGE_B = "stageB"
    STAGE_C = "stageC"
    REJECT = "reject"


class RouteLabel(str, Enum):
    """Labels produced by the routing functions after stageA and stageB."""

    APPROVED = "approved"
    REJECTED = "rejected"


# Stages that can send a run to the reject node, in order.
DECISION_STAGES = (StageName.STAGE_A, StageName.STAGE_B)


@dataclass
class ApprovalWorkflowConfig:
    """Configuration for the approval pipeline and its runner."""

    name: str = "approval"
    stage_a_actor: str = "maker"
    stage_b_actor: str = "checker"
    stage_c_actor: str = "fulfillment"
    # Session turns handed to each executor; None passes the full history.
    history_window: Optional[int] = 10
    clear_session_on_completion: bool = False
    max_workers: int = 4
    slow_stage_threshold_ms: float = 5000.0
    slow_run_threshold_ms: float = 15000.0

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.history_window is not None and self.history_window < 0:
            raise ValueError("history_window must be >= 0 or None")
