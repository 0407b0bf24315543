"""Approval Flow: Approval Workflow - Run State."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from src.graph.exceptions import WorkflowStateError

from .config import StageName, WorkflowStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def stage_key(stage: Union[StageName, str]) -> str:
    """Normalize a stage given as enum member or plain name."""
    return stage.value if isinstance(stage, StageName) else str(stage)


@dataclass(frozen=True)
class WorkItem:
    """The unit of work submitted for approval. Immutable."""

    work_item_id: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    requester: str = ""
    submitted_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.work_item_id:
            raise ValueError("work_item_id must be non-empty")
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "work_item_id": self.work_item_id,
            "payload": dict(self.payload),
            "requester": self.requester,
            "submitted_at": self.submitted_at.isoformat(),
        }


@dataclass(frozen=True)
class StageOutcome:
    """Decision recorded by one stage.

    ``execution_succeeded`` is only meaningful for the side-effecting
    stage. ``errored`` marks an outcome synthesized from an executor
    failure rather than returned by the executor.
    """

    actor: str
    approved: bool
    reasoning: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    execution_succeeded: Optional[bool] = None
    errored: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def from_error(cls, actor: str, error: Exception) -> "StageOutcome":
        """Rejecting outcome standing in for a failed executor call."""
        return cls(
            actor=actor,
            approved=False,
            reasoning=str(error),
            metadata={"error_type": type(error).__name__},
            errored=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "actor": self.actor,
            "approved": self.approved,
            "reasoning": self.reasoning,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp.isoformat(),
        }
        if self.execution_succeeded is not None:
            data["execution_succeeded"] = self.execution_succeeded
        if self.errored:
            data["errored"] = True
        return data


class WorkflowState:
    """Mutable state threaded through one workflow run.

    Outcomes are write-once per stage and the work item cannot be
    replaced once set. After :meth:`seal` every mutation raises
    WorkflowStateError.
    """

    def __init__(
        self,
        work_item: Optional[WorkItem] = None,
        status: WorkflowStatus = WorkflowStatus.UNDER_REVIEW,
    ):
        self._work_item: Optional[WorkItem] = None
        self._stage_outcomes: Dict[str, StageOutcome] = {}
        self._status = status
        self._error_message: Optional[str] = None
        self._context: Dict[str, Any] = {}
        self._sealed = False
        if work_item is not None:
            self.work_item = work_item

    def __repr__(self) -> str:
        return (
            f"WorkflowState(work_item_id={self.work_item_id!r}, "
            f"status={self._status.value!r}, stages={list(self._stage_outcomes)})"
        )

    # ── Work item ─────────────────────────────────────────────────────

    @property
    def work_item(self) -> Optional[WorkItem]:
        return self._work_item

    @work_item.setter
    def work_item(self, value: WorkItem) -> None:
        self._check_open()
        if self._work_item is not None:
            raise WorkflowStateError(
                f"work item already set to '{self._work_item.work_item_id}'"
            )
        self._work_item = value

    @property
    def work_item_id(self) -> str:
        return self._work_item.work_item_id if self._work_item else ""

    # ── Status ────────────────────────────────────────────────────────

    @property
    def status(self) -> WorkflowStatus:
        return self._status

    @status.setter
    def status(self, value: WorkflowStatus) -> None:
        self._check_open()
        self._status = WorkflowStatus(value)

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @error_message.setter
    def error_message(self, value: Optional[str]) -> None:
        self._check_open()
        self._error_message = value

    # ── Outcomes ──────────────────────────────────────────────────────

    @property
    def stage_outcomes(self) -> Mapping[str, StageOutcome]:
        """Read-only view, in execution order."""
        return MappingProxyType(self._stage_outcomes)

    def outcome(self, stage: Union[StageName, str]) -> Optional[StageOutcome]:
        return self._stage_outcomes.get(stage_key(stage))

    def has_outcome(self, stage: Union[StageName, str]) -> bool:
        return stage_key(stage) in self._stage_outcomes

    def record_outcome(self, stage: Union[StageName, str], outcome: StageOutcome) -> None:
        self._check_open()
        key = stage_key(stage)
        if key in self._stage_outcomes:
            raise WorkflowStateError(f"outcome for '{key}' already recorded")
        self._stage_outcomes[key] = outcome

    # ── Context ───────────────────────────────────────────────────────

    @property
    def context(self) -> Mapping[str, Any]:
        return MappingProxyType(self._context)

    def add_to_context(self, key: str, value: Any) -> None:
        self._check_open()
        self._context[key] = value

    # ── Lifecycle ─────────────────────────────────────────────────────

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        """Freeze the state once the run has returned. Idempotent."""
        self._sealed = True

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe summary attached to audit records."""
        return {
            "work_item_id": self.work_item_id,
            "status": self._status.value,
            "stages": list(self._stage_outcomes),
            "error_message": self._error_message,
        }

    def _check_open(self) -> None:
        if self._sealed:
            raise WorkflowStateError(
                f"state for work item '{self.work_item_id}' is sealed"
            )
