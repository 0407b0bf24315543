"""API Request/Response Models.

Pydantic schemas for all API endpoints.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.approval_workflow.runner import WorkflowResult
from src.approval_workflow.state import StageOutcome
from src.audit.events import AuditRecord
from src.session_memory.memory import Session, Turn


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Common ──────────────────────────────────────────────────────────────


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    code: str
    detail: Optional[str] = None
    request_id: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "1.0.0"
    timestamp: datetime = Field(default_factory=_utcnow)
    components: dict[str, Any] = Field(default_factory=dict)


# ─── Approvals ───────────────────────────────────────────────────────────


class SubmitRequest(BaseModel):
    """A work item submitted for approval."""

    work_item_id: Optional[str] = Field(default=None, min_length=1, max_length=128)
    payload: dict[str, Any] = Field(default_factory=dict)
    requester: str = ""


class StageOutcomeResponse(BaseModel):
    """Decision recorded by one stage."""

    actor: str
    approved: bool
    reasoning: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    execution_succeeded: Optional[bool] = None
    errored: bool = False

    @classmethod
    def from_outcome(cls, outcome: Optional[StageOutcome]) -> Optional["StageOutcomeResponse"]:
        if outcome is None:
            return None
        return cls(
            actor=outcome.actor,
            approved=outcome.approved,
            reasoning=outcome.reasoning,
            metadata=dict(outcome.metadata),
            timestamp=outcome.timestamp,
            execution_succeeded=outcome.execution_succeeded,
            errored=outcome.errored,
        )


class SubmitResponse(BaseModel):
    """Final result of a workflow run. Absent stages are omitted."""

    work_item_id: str
    final_status: str
    message: str = ""
    stage_a_outcome: Optional[StageOutcomeResponse] = None
    stage_b_outcome: Optional[StageOutcomeResponse] = None
    stage_c_outcome: Optional[StageOutcomeResponse] = None

    @classmethod
    def from_result(cls, result: WorkflowResult) -> "SubmitResponse":
        return cls(
            work_item_id=result.work_item_id,
            final_status=result.final_status.value,
            message=result.message,
            stage_a_outcome=StageOutcomeResponse.from_outcome(result.stage_a_outcome),
            stage_b_outcome=StageOutcomeResponse.from_outcome(result.stage_b_outcome),
            stage_c_outcome=StageOutcomeResponse.from_outcome(result.stage_c_outcome),
        )


# ─── Audit ───────────────────────────────────────────────────────────────


class AuditRecordResponse(BaseModel):
    """One audit trail entry."""

    record_id: str
    stage: str
    actor: str
    action: str
    details: str = ""
    work_item_id: str
    context_snapshot: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditRecordResponse":
        return cls(
            record_id=record.record_id,
            stage=record.stage,
            actor=record.actor,
            action=record.action,
            details=record.details,
            work_item_id=record.work_item_id,
            context_snapshot=dict(record.context_snapshot),
            timestamp=record.timestamp,
        )


class AuditTrailResponse(BaseModel):
    """Audit records of one work item, oldest first."""

    work_item_id: str
    count: int
    records: list[AuditRecordResponse] = Field(default_factory=list)


# ─── Session ─────────────────────────────────────────────────────────────


class TurnResponse(BaseModel):
    request: str
    response: str
    stage: str = ""
    actor: str = ""
    created_at: datetime

    @classmethod
    def from_turn(cls, turn: Turn) -> "TurnResponse":
        return cls(
            request=turn.request,
            response=turn.response,
            stage=turn.stage,
            actor=turn.actor,
            created_at=turn.created_at,
        )


class SessionResponse(BaseModel):
    """Conversational context accumulated for a work item."""

    work_item_id: str
    turn_count: int
    created_at: datetime
    last_accessed_at: datetime
    turns: list[TurnResponse] = Field(default_factory=list)

    @classmethod
    def from_session(cls, session: Session, turns: list[Turn]) -> "SessionResponse":
        return cls(
            work_item_id=session.session_id,
            turn_count=len(turns),
            created_at=session.created_at,
            last_accessed_at=session.last_accessed_at,
            turns=[TurnResponse.from_turn(t) for t in turns],
        )


class SessionClearedResponse(BaseModel):
    work_item_id: str
    cleared: bool
