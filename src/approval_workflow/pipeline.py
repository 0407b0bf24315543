"""Approval Flow: Approval Workflow - Pipeline Definition.

Three sequential decision stages over one work item:

    stageA --approved--> stageB --approved--> stageC --> END
       \\                   \\
        rejected ----------- rejected --> reject --> END

Each stage asks its StepExecutor for a decision, records the outcome,
emits audit records, and appends a turn to the work item's session.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from src.audit.config import AuditAction
from src.audit.sink import AuditSink
from src.graph.config import END, GraphConfig
from src.graph.engine import CompiledGraph, StateGraph
from src.graph.exceptions import ConfigurationError, StepExecutionError
from src.logging_config.performance import PerformanceTimer
from src.session_memory.memory import SessionMemory, Turn

from .config import DECISION_STAGES, ApprovalWorkflowConfig, RouteLabel, StageName, WorkflowStatus
from .executors import StepExecutor, StepRequest
from .state import StageOutcome, WorkflowState

logger = logging.getLogger(__name__)

A = StageName.STAGE_A.value
B = StageName.STAGE_B.value
C = StageName.STAGE_C.value
REJECT = StageName.REJECT.value

DEFAULT_ROUTES: Dict[str, Dict[str, str]] = {
    A: {RouteLabel.APPROVED.value: B, RouteLabel.REJECTED.value: REJECT},
    B: {RouteLabel.APPROVED.value: C, RouteLabel.REJECTED.value: REJECT},
}


def route_on(stage: str):
    """Routing function labelling a run by *stage*'s approval flag."""

    def route(state: WorkflowState) -> str:
        outcome = state.outcome(stage)
        if outcome is not None and outcome.approved:
            return RouteLabel.APPROVED.value
        return RouteLabel.REJECTED.value

    route.__name__ = f"route_after_{stage}"
    return route


class ApprovalPipeline:
    """Builds and runs the three-stage approval graph.

    Nodes are bound methods and keep no per-run state, so one pipeline
    serves any number of concurrent runs.

    Args:
        stage_a: Executor for the first review.
        stage_b: Executor for the second review.
        stage_c: Executor performing the side effect.
        audit_sink: Where stage transitions are recorded. Optional.
        memory: Session store for per-work-item history. Optional.
        config: Actor names and thresholds.
        routes: Per-node replacement of the default label tables.
    """

    def __init__(
        self,
        stage_a: StepExecutor,
        stage_b: StepExecutor,
        stage_c: StepExecutor,
        audit_sink: Optional[AuditSink] = None,
        memory: Optional[SessionMemory] = None,
        config: Optional[ApprovalWorkflowConfig] = None,
        routes: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        self.config = config or ApprovalWorkflowConfig()
        self.audit_sink = audit_sink
        self.memory = memory
        self._stages: Dict[str, Tuple[str, StepExecutor]] = {
            A: (self.config.stage_a_actor, stage_a),
            B: (self.config.stage_b_actor, stage_b),
            C: (self.config.stage_c_actor, stage_c),
        }
        self.routes = self.resolve_routes(routes)
        self.graph = self.build_graph().compile()

    @staticmethod
    def resolve_routes(
        overrides: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> Dict[str, Dict[str, str]]:
        """Merge per-node overrides into the default label tables.

        An override may drop labels but never retarget one: stageC only
        runs after both approvals and no stage runs twice.

        Raises:
            ConfigurationError: If an override names a node without a
                route table, or sends a label somewhere other than its
                default target.
        """
        routes = {node: dict(table) for node, table in DEFAULT_ROUTES.items()}
        problems = []
        for node, table in (overrides or {}).items():
            defaults = DEFAULT_ROUTES.get(node)
            if defaults is None:
                problems.append(f"'{node}' has no route table to override")
                continue
            for label, target in table.items():
                expected = defaults.get(label)
                if expected is None:
                    problems.append(f"'{node}' has no route label '{label}'")
                elif target != expected:
                    problems.append(
                        f"'{node}' label '{label}' must route to '{expected}', not '{target}'"
                    )
            routes[node] = dict(table)
        if problems:
            raise ConfigurationError(
                f"Invalid route overrides: {'; '.join(problems)}", problems=problems
            )
        return routes

    def build_graph(self) -> StateGraph:
        graph: StateGraph = StateGraph(
            GraphConfig(
                name=self.config.name,
                slow_node_threshold_ms=self.config.slow_stage_threshold_ms,
            )
        )
        graph.add_node(A, self.stage_a)
        graph.add_node(B, self.stage_b)
        graph.add_node(C, self.stage_c)
        graph.add_node(REJECT, self.reject)
        graph.set_entry_point(A)
        graph.add_conditional_edges(A, route_on(A), self.routes[A])
        graph.add_conditional_edges(B, route_on(B), self.routes[B])
        graph.add_edge(C, END)
        graph.add_edge(REJECT, END)
        return graph

    @property
    def compiled(self) -> CompiledGraph:
        return self.graph

    def actor_for(self, stage: str) -> str:
        """Actor configured for *stage*, or "" for non-decision nodes."""
        entry = self._stages.get(stage)
        return entry[0] if entry else ""

    def invoke(self, state: WorkflowState, trace: Optional[list] = None) -> WorkflowState:
        return self.graph.invoke(state, trace=trace)

    # ── Nodes ─────────────────────────────────────────────────────────

    def stage_a(self, state: WorkflowState) -> WorkflowState:
        outcome = self._run_stage(state, A)
        state.status = WorkflowStatus.UNDER_REVIEW if outcome.approved else WorkflowStatus.REJECTED
        return state

    def stage_b(self, state: WorkflowState) -> WorkflowState:
        outcome = self._run_stage(state, B)
        state.status = WorkflowStatus.APPROVED if outcome.approved else WorkflowStatus.REJECTED
        return state

    def stage_c(self, state: WorkflowState) -> WorkflowState:
        outcome = self._run_stage(state, C)
        if outcome.approved and outcome.execution_succeeded is not False:
            state.status = WorkflowStatus.FULFILLED
            self.emit_audit(
                state, C, outcome.actor, AuditAction.WORKFLOW_FULFILLED,
                f"Fulfilled by {outcome.actor}: {outcome.reasoning}",
            )
        else:
            state.status = WorkflowStatus.FAILED
            state.error_message = f"{C} failed for {outcome.actor}: {outcome.reasoning}"
            self.emit_audit(state, C, outcome.actor, AuditAction.WORKFLOW_FAILED, state.error_message)
        return state

    def reject(self, state: WorkflowState) -> WorkflowState:
        """Terminal side of the graph for rejected or errored decisions."""
        stage, outcome = self._rejecting_outcome(state)
        if outcome is None:
            state.status = WorkflowStatus.REJECTED
            state.error_message = "Rejected without a rejecting stage outcome"
            actor = ""
        elif outcome.errored:
            state.status = WorkflowStatus.FAILED
            state.error_message = f"{stage} failed for {outcome.actor}: {outcome.reasoning}"
            actor = outcome.actor
        else:
            state.status = WorkflowStatus.REJECTED
            state.error_message = f"Rejected by {outcome.actor} at {stage}: {outcome.reasoning}"
            actor = outcome.actor

        action = (
            AuditAction.WORKFLOW_FAILED
            if state.status is WorkflowStatus.FAILED
            else AuditAction.WORKFLOW_REJECTED
        )
        self.emit_audit(state, REJECT, actor, action, state.error_message)
        logger.info(
            "Work item %s %s: %s", state.work_item_id, state.status.value, state.error_message,
            extra={"work_item_id": state.work_item_id, "stage": stage, "status": state.status.value},
        )
        return state

    # ── Stage mechanics ───────────────────────────────────────────────

    def _run_stage(self, state: WorkflowState, stage: str) -> StageOutcome:
        actor, executor = self._stages[stage]
        work_item_id = state.work_item_id
        extra = {"work_item_id": work_item_id, "stage": stage, "actor": actor}

        request = StepRequest(
            stage=stage,
            actor=actor,
            work_item=state.work_item,
            context=state.context,
            prior_outcomes=state.stage_outcomes,
            history=self._history(work_item_id),
        )
        self.emit_audit(
            state, stage, actor, AuditAction.EXECUTION_STARTED,
            f"Starting {stage} for work item {work_item_id}",
        )

        try:
            with PerformanceTimer(
                f"{self.config.name}.{stage}.execute",
                threshold_ms=self.config.slow_stage_threshold_ms,
                logger_=logger,
            ):
                outcome = executor.execute(request)
            if not isinstance(outcome, StageOutcome):
                raise TypeError(
                    f"executor returned {type(outcome).__name__}, expected StageOutcome"
                )
        except Exception as exc:
            error = StepExecutionError(stage, actor, exc)
            logger.error("%s failed for %s: %s", stage, actor, error, exc_info=True, extra=extra)
            outcome = StageOutcome.from_error(actor, error)
            state.record_outcome(stage, outcome)
            state.add_to_context(stage, outcome.to_dict())
            self.emit_audit(state, stage, actor, AuditAction.EXECUTION_FAILED, str(error))
        else:
            state.record_outcome(stage, outcome)
            state.add_to_context(stage, outcome.to_dict())
            verdict = "Approved" if outcome.approved else "Rejected"
            self.emit_audit(
                state, stage, outcome.actor, AuditAction.EXECUTION_COMPLETED,
                f"{verdict}: {outcome.reasoning}",
            )
            logger.info("%s %s by %s", stage, verdict.lower(), outcome.actor, extra=extra)

        self._remember(work_item_id, Turn(
            request=request.summary(),
            response=outcome.reasoning,
            stage=stage,
            actor=outcome.actor,
        ))
        return outcome

    @staticmethod
    def _rejecting_outcome(state: WorkflowState) -> Tuple[str, Optional[StageOutcome]]:
        for stage in DECISION_STAGES:
            outcome = state.outcome(stage)
            if outcome is not None and not outcome.approved:
                return stage.value, outcome
        return "", None

    # ── Side channels ─────────────────────────────────────────────────

    def emit_audit(
        self,
        state: WorkflowState,
        stage: str,
        actor: str,
        action: AuditAction,
        details: str,
    ) -> Optional[str]:
        """Hand a record to the audit sink. Never blocks or raises."""
        if self.audit_sink is None:
            return None
        return self.audit_sink.emit(
            stage=stage,
            actor=actor,
            action=action.value,
            details=details,
            work_item_id=state.work_item_id,
            context_snapshot=state.snapshot(),
        )

    def _history(self, work_item_id: str) -> Tuple[Turn, ...]:
        if self.memory is None:
            return ()
        try:
            return tuple(self.memory.history(work_item_id, limit=self.config.history_window))
        except Exception as exc:
            logger.warning(
                "Session history unavailable for %s: %s", work_item_id, exc,
                extra={"work_item_id": work_item_id},
            )
            return ()

    def _remember(self, work_item_id: str, turn: Turn) -> None:
        if self.memory is None:
            return
        try:
            self.memory.append(work_item_id, turn)
        except Exception as exc:
            logger.warning(
                "Could not record session turn for %s: %s", work_item_id, exc,
                extra={"work_item_id": work_item_id},
            )

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.config.name,
            "actors": {stage: actor for stage, (actor, _) in self._stages.items()},
            "routes": {node: dict(table) for node, table in self.routes.items()},
        }
