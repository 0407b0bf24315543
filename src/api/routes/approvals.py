"""Approval API Routes.

Endpoints for submitting work items and inspecting their audit trail
and session context.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.dependencies import ServiceContainer, get_container
from src.api.models import (
    AuditRecordResponse,
    AuditTrailResponse,
    SessionClearedResponse,
    SessionResponse,
    SubmitRequest,
    SubmitResponse,
)
from src.approval_workflow.state import WorkItem
from src.audit.query import AuditQuery

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/approvals", tags=["Approvals"])


def _api_config(request: Request) -> APIConfig:
    return getattr(request.app.state, "api_config", DEFAULT_API_CONFIG)


@router.post("", response_model=SubmitResponse, response_model_exclude_none=True)
async def submit_work_item(
    body: SubmitRequest,
    container: ServiceContainer = Depends(get_container),
) -> SubmitResponse:
    """Run a work item through the approval pipeline.

    Rejected and failed runs are results, not errors: both return 200.
    """
    work_item = WorkItem(
        work_item_id=body.work_item_id or str(uuid.uuid4()),
        payload=body.payload,
        requester=body.requester,
    )
    result = await run_in_threadpool(container.runner.submit, work_item)
    logger.info(f"Work item {result.work_item_id} finished: {result.final_status.value}")
    return SubmitResponse.from_result(result)


@router.get("/{work_item_id}/audit", response_model=AuditTrailResponse)
async def get_audit_trail(
    work_item_id: str,
    request: Request,
    stage: Optional[str] = None,
    action: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1),
    container: ServiceContainer = Depends(get_container),
) -> AuditTrailResponse:
    """Audit records for one work item, oldest first."""
    config = _api_config(request)
    flushed = await run_in_threadpool(
        container.audit_sink.flush, config.audit_flush_timeout_seconds
    )
    if not flushed:
        logger.warning("Audit queue not drained; trail for %s may be incomplete", work_item_id)

    query = AuditQuery(container.audit_store).filter_by_work_item(work_item_id)
    if stage:
        query = query.filter_by_stage(stage)
    if action:
        query = query.filter_by_action(action)
    records = query.limit(min(limit or config.default_audit_limit, config.max_audit_limit)).execute()

    return AuditTrailResponse(
        work_item_id=work_item_id,
        count=len(records),
        records=[AuditRecordResponse.from_record(r) for r in records],
    )


@router.get("/{work_item_id}/session", response_model=SessionResponse)
async def get_session(
    work_item_id: str,
    container: ServiceContainer = Depends(get_container),
) -> SessionResponse:
    """Conversational context recorded for a work item."""
    session = container.memory.get(work_item_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {work_item_id}")
    turns = container.memory.history(work_item_id)
    return SessionResponse.from_session(session, turns)


@router.delete("/{work_item_id}/session", response_model=SessionClearedResponse)
async def clear_session(
    work_item_id: str,
    container: ServiceContainer = Depends(get_container),
) -> SessionClearedResponse:
    """Drop a work item's session. Idempotent."""
    cleared = container.memory.clear(work_item_id)
    return SessionClearedResponse(work_item_id=work_item_id, cleared=cleared)
