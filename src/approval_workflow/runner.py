"""Approval Flow: Approval Workflow - Runner."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from src.audit.config import AuditAction
from src.graph.exceptions import RoutingError
from src.logging_config.context import RequestContext
from src.logging_config.performance import PerformanceTimer, log_performance

from .config import StageName, WorkflowStatus
from .pipeline import ApprovalPipeline
from .state import StageOutcome, WorkflowState, WorkItem

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    """Projection of a finished run returned to callers."""

    work_item_id: str
    final_status: WorkflowStatus
    stage_a_outcome: Optional[StageOutcome] = None
    stage_b_outcome: Optional[StageOutcome] = None
    stage_c_outcome: Optional[StageOutcome] = None
    message: str = ""

    @classmethod
    def from_state(cls, state: WorkflowState) -> "WorkflowResult":
        return cls(
            work_item_id=state.work_item_id,
            final_status=state.status,
            stage_a_outcome=state.outcome(StageName.STAGE_A),
            stage_b_outcome=state.outcome(StageName.STAGE_B),
            stage_c_outcome=state.outcome(StageName.STAGE_C),
            message=_message(state),
        )

    @property
    def outcomes(self) -> Dict[str, StageOutcome]:
        """Outcomes of the stages that ran, in pipeline order."""
        pairs = (
            (StageName.STAGE_A.value, self.stage_a_outcome),
            (StageName.STAGE_B.value, self.stage_b_outcome),
            (StageName.STAGE_C.value, self.stage_c_outcome),
        )
        return {stage: o for stage, o in pairs if o is not None}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "work_item_id": self.work_item_id,
            "final_status": self.final_status.value,
            "message": self.message,
        }
        if self.stage_a_outcome is not None:
            data["stage_a_outcome"] = self.stage_a_outcome.to_dict()
        if self.stage_b_outcome is not None:
            data["stage_b_outcome"] = self.stage_b_outcome.to_dict()
        if self.stage_c_outcome is not None:
            data["stage_c_outcome"] = self.stage_c_outcome.to_dict()
        return data


def _message(state: WorkflowState) -> str:
    if state.error_message:
        return state.error_message
    if state.status is WorkflowStatus.FULFILLED:
        outcome = state.outcome(StageName.STAGE_C)
        return f"Fulfilled by {outcome.actor}: {outcome.reasoning}"
    return f"Workflow {state.status.value}"


class WorkflowRunner:
    """Entry point: one submit call runs one work item to completion.

    The run executes on the calling thread. ``submit_many`` fans
    independent work items out over a thread pool.
    """

    def __init__(self, pipeline: ApprovalPipeline):
        self.pipeline = pipeline
        self.config = pipeline.config

    def submit(self, work_item: WorkItem) -> WorkflowResult:
        """Run *work_item* through the pipeline.

        Raises:
            RoutingError: The graph could not route the run. The failed
                result is attached as ``exc.result``.
        """
        extra = {"work_item_id": work_item.work_item_id}
        with RequestContext(work_item_id=work_item.work_item_id):
            state = WorkflowState(work_item)
            logger.info("Workflow started for work item %s", work_item.work_item_id, extra=extra)
            try:
                with PerformanceTimer(
                    f"{self.config.name}.run",
                    threshold_ms=self.config.slow_run_threshold_ms,
                    logger_=logger,
                ):
                    state = self.pipeline.invoke(state)
            except RoutingError as exc:
                exc.result = self._abort(state, exc)
                raise
            finally:
                self._finish(work_item.work_item_id)

            state.seal()
            result = WorkflowResult.from_state(state)
            logger.info(
                "Workflow finished for work item %s: %s",
                work_item.work_item_id, result.final_status.value,
                extra={**extra, "status": result.final_status.value},
            )
            return result

    @log_performance(threshold_ms=60_000.0)
    def submit_many(
        self,
        work_items: Iterable[WorkItem],
        max_workers: Optional[int] = None,
    ) -> List[WorkflowResult]:
        """Run independent work items in parallel; results keep input order.

        A run that fails routing contributes the failed result attached
        to its RoutingError.
        """
        items = list(work_items)
        if not items:
            return []
        workers = min(max_workers or self.config.max_workers, len(items))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="workflow") as pool:
            futures = [pool.submit(self.submit, item) for item in items]
            results: List[WorkflowResult] = []
            for future in futures:
                try:
                    results.append(future.result())
                except RoutingError as exc:
                    results.append(exc.result)
        return results

    def _abort(self, state: WorkflowState, exc: RoutingError) -> WorkflowResult:
        if isinstance(exc.state, WorkflowState):
            state = exc.state
        if not state.is_sealed:
            state.status = WorkflowStatus.FAILED
            state.error_message = f"Routing failed at {exc.node or 'unknown node'}: {exc.message}"
        self.pipeline.emit_audit(
            state,
            exc.node,
            self.pipeline.actor_for(exc.node),
            AuditAction.WORKFLOW_ABORTED,
            state.error_message or exc.message,
        )
        state.seal()
        logger.error(
            "Workflow aborted for work item %s: %s", state.work_item_id, exc.message,
            extra={"work_item_id": state.work_item_id, "stage": exc.node, "status": state.status.value},
        )
        return WorkflowResult.from_state(state)

    def _finish(self, work_item_id: str) -> None:
        memory = self.pipeline.memory
        if memory is not None and self.config.clear_session_on_completion:
            memory.clear(work_item_id)
