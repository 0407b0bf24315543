"""Approval Flow: Approval Workflow.

Three-stage approval pipeline (stageA -> stageB -> stageC, with a shared
reject terminal) built on the graph engine, plus the runner that
submits work items to it.
"""

from .config import (
    ApprovalWorkflowConfig,
    RouteLabel,
    StageName,
    WorkflowStatus,
)
from .state import StageOutcome, WorkflowState, WorkItem
from .executors import (
    BaseStepExecutor,
    CallableStepExecutor,
    ExecutorConfig,
    LookupOperation,
    LookupParameter,
    LookupRegistry,
    StepExecutor,
    StepRequest,
)
from .pipeline import ApprovalPipeline
from .runner import WorkflowResult, WorkflowRunner

__all__ = [
    # Config
    "ApprovalWorkflowConfig",
    "RouteLabel",
    "StageName",
    "WorkflowStatus",
    # State
    "StageOutcome",
    "WorkflowState",
    "WorkItem",
    # Executors
    "BaseStepExecutor",
    "CallableStepExecutor",
    "ExecutorConfig",
    "LookupOperation",
    "LookupParameter",
    "LookupRegistry",
    "StepExecutor",
    "StepRequest",
    # Pipeline
    "ApprovalPipeline",
    "WorkflowResult",
    "WorkflowRunner",
]
