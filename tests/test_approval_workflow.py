"""Tests for the three-stage approval pipeline and its runner."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.approval_workflow import (
    ApprovalPipeline,
    ApprovalWorkflowConfig,
    BaseStepExecutor,
    CallableStepExecutor,
    ExecutorConfig,
    LookupOperation,
    LookupParameter,
    LookupRegistry,
    RouteLabel,
    StageName,
    StageOutcome,
    StepExecutor,
    StepRequest,
    WorkflowResult,
    WorkflowRunner,
    WorkflowState,
    WorkflowStatus,
    WorkItem,
)
from src.audit import AuditAction, AuditSink, InMemoryAuditStore
from src.graph import ConfigurationError, RoutingError, WorkflowStateError
from src.session_memory import SessionMemory


class StubExecutor:
    """Records every request and answers with a fixed decision."""

    def __init__(self, actor, approved=True, reasoning="ok", execution_succeeded=None, error=None):
        self.actor = actor
        self.approved = approved
        self.reasoning = reasoning
        self.execution_succeeded = execution_succeeded
        self.error = error
        self.requests = []
        self._lock = threading.Lock()

    @property
    def calls(self):
        return len(self.requests)

    def execute(self, request):
        with self._lock:
            self.requests.append(request)
        if self.error is not None:
            raise self.error
        return StageOutcome(
            actor=self.actor,
            approved=self.approved,
            reasoning=self.reasoning,
            execution_succeeded=self.execution_succeeded,
        )


def _item(work_item_id="wi-1", **payload):
    return WorkItem(work_item_id=work_item_id, payload=payload or {"amount": 100}, requester="alice")


class WorkflowHarness:
    def __init__(self, a=None, b=None, c=None, routes=None, config=None):
        self.a = a or StubExecutor("maker", reasoning="looks valid")
        self.b = b or StubExecutor("checker", reasoning="verified")
        self.c = c or StubExecutor("fulfillment", reasoning="refund issued", execution_succeeded=True)
        self.store = InMemoryAuditStore()
        self.sink = AuditSink(self.store)
        self.memory = SessionMemory()
        self.pipeline = ApprovalPipeline(
            self.a, self.b, self.c,
            audit_sink=self.sink,
            memory=self.memory,
            config=config,
            routes=routes,
        )
        self.runner = WorkflowRunner(self.pipeline)

    def audit(self, work_item_id="wi-1"):
        assert self.sink.flush(timeout=5.0)
        return self.store.find_by_work_item(work_item_id)

    def close(self):
        self.sink.stop()


# ── State ────────────────────────────────────────────────────────────


class TestWorkItem:
    """Tests for work item records."""

    def test_payload_is_read_only_copy(self):
        payload = {"amount": 10}
        item = WorkItem(work_item_id="wi-1", payload=payload)
        payload["amount"] = 99
        assert item.payload["amount"] == 10
        with pytest.raises(TypeError):
            item.payload["amount"] = 1

    def test_requires_identifier(self):
        with pytest.raises(ValueError):
            WorkItem(work_item_id="")

    def test_to_dict(self):
        data = _item().to_dict()
        assert data["work_item_id"] == "wi-1"
        assert data["requester"] == "alice"
        assert data["payload"] == {"amount": 100}


class TestStageOutcome:
    """Tests for stage outcome records."""

    def test_to_dict_omits_unused_fields(self):
        data = StageOutcome(actor="maker", approved=True, reasoning="fine").to_dict()
        assert data["approved"] is True
        assert "execution_succeeded" not in data
        assert "errored" not in data

    def test_from_error(self):
        outcome = StageOutcome.from_error("checker", RuntimeError("down"))
        assert outcome.approved is False
        assert outcome.errored is True
        assert outcome.reasoning == "down"
        assert outcome.metadata["error_type"] == "RuntimeError"


class TestWorkflowState:
    """Tests for workflow run state guards."""

    def setup_method(self):
        self.state = WorkflowState(_item())

    def test_initial_status(self):
        assert self.state.status is WorkflowStatus.UNDER_REVIEW
        assert self.state.work_item_id == "wi-1"
        assert dict(self.state.stage_outcomes) == {}

    def test_work_item_cannot_be_reassigned(self):
        with pytest.raises(WorkflowStateError):
            self.state.work_item = _item("wi-2")

    def test_outcome_is_write_once(self):
        outcome = StageOutcome(actor="maker", approved=True)
        self.state.record_outcome(StageName.STAGE_A, outcome)
        assert self.state.outcome("stageA") is outcome
        with pytest.raises(WorkflowStateError):
            self.state.record_outcome("stageA", outcome)

    def test_outcomes_view_is_read_only(self):
        with pytest.raises(TypeError):
            self.state.stage_outcomes["stageA"] = StageOutcome(actor="x", approved=True)

    def test_sealed_state_rejects_mutation(self):
        self.state.seal()
        with pytest.raises(WorkflowStateError):
            self.state.status = WorkflowStatus.FAILED
        with pytest.raises(WorkflowStateError):
            self.state.add_to_context("k", "v")
        with pytest.raises(WorkflowStateError):
            self.state.record_outcome("stageA", StageOutcome(actor="x", approved=True))

    def test_snapshot(self):
        self.state.record_outcome("stageA", StageOutcome(actor="maker", approved=True))
        snap = self.state.snapshot()
        assert snap == {
            "work_item_id": "wi-1",
            "status": "under-review",
            "stages": ["stageA"],
            "error_message": None,
        }


class TestApprovalWorkflowConfig:
    """Tests for workflow configuration."""

    def test_defaults(self):
        config = ApprovalWorkflowConfig()
        assert config.stage_a_actor == "maker"
        assert config.stage_b_actor == "checker"
        assert config.stage_c_actor == "fulfillment"
        assert config.clear_session_on_completion is False

    def test_invalid_workers(self):
        with pytest.raises(ValueError):
            ApprovalWorkflowConfig(max_workers=0)

    def test_enum_values(self):
        assert [s.value for s in WorkflowStatus] == [
            "under-review", "approved", "rejected", "fulfilled", "failed",
        ]
        assert StageName.REJECT.value == "reject"
        assert RouteLabel.APPROVED.value == "approved"


# ── Pipeline scenarios ───────────────────────────────────────────────


class TestApprovalScenarios:
    """Tests for end-to-end approval runs."""

    def teardown_method(self):
        self.h.close()

    def test_happy_path_fulfilled(self):
        self.h = WorkflowHarness()
        result = self.h.runner.submit(_item())

        assert result.final_status is WorkflowStatus.FULFILLED
        assert list(result.outcomes) == ["stageA", "stageB", "stageC"]
        assert result.stage_c_outcome.execution_succeeded is True
        assert result.message == "Fulfilled by fulfillment: refund issued"

        records = self.h.audit()
        stages = {r.stage for r in records}
        assert {"stageA", "stageB", "stageC"} <= stages
        actions = [r.action for r in records]
        assert actions.count(AuditAction.EXECUTION_STARTED.value) == 3
        assert actions.count(AuditAction.EXECUTION_COMPLETED.value) == 3
        assert actions[-1] == AuditAction.WORKFLOW_FULFILLED.value

    def test_stage_a_rejects_short_circuits(self):
        self.h = WorkflowHarness(a=StubExecutor("maker", approved=False, reasoning="missing receipt"))
        result = self.h.runner.submit(_item())

        assert result.final_status is WorkflowStatus.REJECTED
        assert "maker" in result.message
        assert result.message == "Rejected by maker at stageA: missing receipt"
        assert result.stage_b_outcome is None
        assert result.stage_c_outcome is None
        assert self.h.b.calls == 0
        assert self.h.c.calls == 0
        assert self.h.audit()[-1].action == AuditAction.WORKFLOW_REJECTED.value

    def test_stage_b_rejects(self):
        self.h = WorkflowHarness(b=StubExecutor("checker", approved=False, reasoning="over limit"))
        result = self.h.runner.submit(_item())

        assert result.final_status is WorkflowStatus.REJECTED
        assert "checker" in result.message
        assert result.stage_a_outcome.approved is True
        assert result.stage_b_outcome.approved is False
        assert result.stage_c_outcome is None
        assert self.h.c.calls == 0

    def test_side_effect_failure_is_failed_not_rejected(self):
        self.h = WorkflowHarness(
            c=StubExecutor("fulfillment", approved=True, reasoning="gateway timeout", execution_succeeded=False)
        )
        result = self.h.runner.submit(_item())

        assert result.final_status is WorkflowStatus.FAILED
        assert "gateway timeout" in result.message
        assert self.h.audit()[-1].action == AuditAction.WORKFLOW_FAILED.value

    def test_stage_c_declining_is_failed(self):
        self.h = WorkflowHarness(c=StubExecutor("fulfillment", approved=False, reasoning="cannot pay"))
        result = self.h.runner.submit(_item())
        assert result.final_status is WorkflowStatus.FAILED

    def test_stage_b_sees_stage_a_outcome(self):
        self.h = WorkflowHarness()
        self.h.runner.submit(_item())

        request = self.h.b.requests[0]
        assert isinstance(request, StepRequest)
        assert list(request.prior_outcomes) == ["stageA"]
        assert request.context["stageA"]["actor"] == "maker"
        c_request = self.h.c.requests[0]
        assert list(c_request.prior_outcomes) == ["stageA", "stageB"]

    def test_executor_exception_fails_run(self):
        self.h = WorkflowHarness(b=StubExecutor("checker", error=ConnectionError("model offline")))
        result = self.h.runner.submit(_item())

        assert result.final_status is WorkflowStatus.FAILED
        assert result.stage_b_outcome.errored is True
        assert "ConnectionError: model offline" in result.message
        assert self.h.c.calls == 0
        actions = [r.action for r in self.h.audit()]
        assert AuditAction.EXECUTION_FAILED.value in actions
        assert actions[-1] == AuditAction.WORKFLOW_FAILED.value

    def test_executor_returning_wrong_type_is_an_execution_error(self):
        self.h = WorkflowHarness(a=CallableStepExecutor(lambda request: "approved"))
        result = self.h.runner.submit(_item())
        assert result.final_status is WorkflowStatus.FAILED
        assert "TypeError" in result.message

    def test_missing_route_label_raises_routing_error(self):
        self.h = WorkflowHarness(
            a=StubExecutor("maker", approved=False),
            routes={"stageA": {"approved": "stageB"}},
        )
        with pytest.raises(RoutingError) as exc_info:
            self.h.runner.submit(_item())

        err = exc_info.value
        assert err.node == "stageA"
        assert err.label == "rejected"
        assert err.result.final_status is WorkflowStatus.FAILED
        assert err.result.stage_a_outcome is not None
        assert err.state.is_sealed
        assert self.h.audit()[-1].action == AuditAction.WORKFLOW_ABORTED.value

    def test_invalid_route_target_refuses_to_build(self):
        with pytest.raises(ConfigurationError):
            WorkflowHarness(routes={"stageA": {"approved": "stageZ", "rejected": "reject"}})
        self.h = WorkflowHarness()

    def test_route_skipping_second_review_refuses_to_build(self):
        self.h = WorkflowHarness()
        with pytest.raises(ConfigurationError) as exc_info:
            ApprovalPipeline(
                self.h.a, self.h.b, self.h.c,
                routes={"stageA": {"approved": "stageC", "rejected": "reject"}},
            )
        assert "must route to 'stageB'" in exc_info.value.problems[0]
        assert self.h.a.calls == 0
        assert self.h.c.calls == 0

    def test_route_back_to_first_review_refuses_to_build(self):
        self.h = WorkflowHarness()
        with pytest.raises(ConfigurationError) as exc_info:
            ApprovalPipeline(
                self.h.a, self.h.b, self.h.c,
                routes={"stageB": {"approved": "stageA", "rejected": "reject"}},
            )
        assert "must route to 'stageC'" in exc_info.value.problems[0]

    def test_route_override_for_terminal_stage_refuses_to_build(self):
        self.h = WorkflowHarness()
        with pytest.raises(ConfigurationError) as exc_info:
            ApprovalPipeline(
                self.h.a, self.h.b, self.h.c,
                routes={"stageC": {"approved": "reject"}},
            )
        assert exc_info.value.problems == ["'stageC' has no route table to override"]

    def test_route_override_with_unknown_label_refuses_to_build(self):
        self.h = WorkflowHarness()
        with pytest.raises(ConfigurationError):
            ApprovalPipeline(
                self.h.a, self.h.b, self.h.c,
                routes={"stageA": {"escalated": "stageB"}},
            )

    def test_earlier_context_survives_tampering_executor(self):
        class TamperingExecutor(StubExecutor):
            def execute(self, request):
                request.context["stageA"]["approved"] = False
                request.context["stageA"]["reasoning"] = "tampered"
                return super().execute(request)

        self.h = WorkflowHarness(b=TamperingExecutor("checker", reasoning="verified"))
        result = self.h.runner.submit(_item())

        assert result.final_status is WorkflowStatus.FULFILLED
        seen = self.h.c.requests[0].context["stageA"]
        assert seen["approved"] is True
        assert seen["reasoning"] == "looks valid"
        assert self.h.c.requests[0].prior_outcomes["stageA"].approved is True

    def test_direct_invoke_leaves_state_open(self):
        self.h = WorkflowHarness()
        state = self.h.pipeline.invoke(WorkflowState(_item()))
        assert state.status is WorkflowStatus.FULFILLED
        assert not state.is_sealed
        trace = []
        self.h.pipeline.invoke(WorkflowState(_item("wi-2")), trace=trace)
        assert trace == ["stageA", "stageB", "stageC"]

    def test_works_without_sink_or_memory(self):
        self.h = WorkflowHarness()
        pipeline = ApprovalPipeline(self.h.a, self.h.b, self.h.c)
        result = WorkflowRunner(pipeline).submit(_item())
        assert result.final_status is WorkflowStatus.FULFILLED


class TestRunnerBehavior:
    """Tests for the workflow runner."""

    def setup_method(self):
        self.h = WorkflowHarness()

    def teardown_method(self):
        self.h.close()

    def test_resubmission_is_deterministic(self):
        first = self.h.runner.submit(_item())
        second = self.h.runner.submit(_item())
        assert first.final_status == second.final_status == WorkflowStatus.FULFILLED
        assert list(first.outcomes) == list(second.outcomes)

    def test_independent_runs_do_not_share_context(self):
        self.h.runner.submit(_item("wi-1"))
        self.h.runner.submit(_item("wi-2"))
        first, second = self.h.a.requests
        assert first.context == {}
        assert second.context == {}
        assert first.work_item_id == "wi-1"
        assert second.work_item_id == "wi-2"

    def test_concurrent_submissions(self):
        items = [_item(f"wi-{i}") for i in range(20)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(self.h.runner.submit, items))
        assert all(r.final_status is WorkflowStatus.FULFILLED for r in results)
        assert [r.work_item_id for r in results] == [i.work_item_id for i in items]
        for item in items:
            records = self.h.audit(item.work_item_id)
            assert {r.work_item_id for r in records} == {item.work_item_id}

    def test_submit_many_keeps_input_order(self):
        items = [_item(f"wi-{i}") for i in range(10)]
        results = self.h.runner.submit_many(items, max_workers=4)
        assert [r.work_item_id for r in results] == [i.work_item_id for i in items]
        assert self.h.runner.submit_many([]) == []

    def test_submit_many_collects_routing_failures(self):
        h = WorkflowHarness(
            a=StubExecutor("maker", approved=False),
            routes={"stageA": {"approved": "stageB"}},
        )
        try:
            results = h.runner.submit_many([_item("wi-1"), _item("wi-2")])
        finally:
            h.close()
        assert [r.final_status for r in results] == [WorkflowStatus.FAILED] * 2

    def test_session_records_one_turn_per_stage(self):
        self.h.runner.submit(_item())
        turns = self.h.memory.history("wi-1")
        assert [t.stage for t in turns] == ["stageA", "stageB", "stageC"]
        assert turns[0].response == "looks valid"
        assert turns[0].actor == "maker"
        assert self.h.b.requests[0].history[0].stage == "stageA"

    def test_session_cleared_on_completion(self):
        h = WorkflowHarness(config=ApprovalWorkflowConfig(clear_session_on_completion=True))
        try:
            h.runner.submit(_item())
            assert not h.memory.exists("wi-1")
        finally:
            h.close()

    def test_session_failure_degrades_to_empty_history(self):
        class BrokenMemory(SessionMemory):
            def history(self, work_item_id, limit=None):
                raise RuntimeError("store offline")

            def append(self, work_item_id, turn):
                raise RuntimeError("store offline")

        pipeline = ApprovalPipeline(self.h.a, self.h.b, self.h.c, memory=BrokenMemory())
        result = WorkflowRunner(pipeline).submit(_item())
        assert result.final_status is WorkflowStatus.FULFILLED
        assert self.h.b.requests[0].history == ()

    def test_result_to_dict_omits_absent_outcomes(self):
        h = WorkflowHarness(a=StubExecutor("maker", approved=False))
        try:
            data = h.runner.submit(_item()).to_dict()
        finally:
            h.close()
        assert data["final_status"] == "rejected"
        assert "stage_a_outcome" in data
        assert "stage_b_outcome" not in data
        assert "stage_c_outcome" not in data

    def test_result_from_state(self):
        state = WorkflowState(_item())
        state.status = WorkflowStatus.APPROVED
        result = WorkflowResult.from_state(state)
        assert result.message == "Workflow approved"
        assert result.outcomes == {}


# ── Executors ────────────────────────────────────────────────────────


class TestLookupRegistry:
    """Tests for named lookup operations."""

    def setup_method(self):
        self.registry = LookupRegistry([
            LookupOperation(
                name="order_total",
                fn=lambda order_id: {"order_id": order_id, "total": 120},
                parameters=(LookupParameter("order_id", str),),
                description="Fetch the order total",
            ),
        ])

    def test_run(self):
        assert self.registry.run("order_total", {"order_id": "o-1"})["total"] == 120
        assert "order_total" in self.registry
        assert len(self.registry) == 1
        assert self.registry.names == ["order_total"]

    def test_unknown_lookup(self):
        with pytest.raises(KeyError):
            self.registry.get("nope")

    def test_duplicate_registration(self):
        with pytest.raises(ValueError):
            self.registry.register(LookupOperation(name="order_total", fn=lambda: None))

    def test_missing_required_parameter(self):
        with pytest.raises(ValueError, match="order_id"):
            self.registry.run("order_total", {})

    def test_parameter_type_checked(self):
        with pytest.raises(TypeError):
            self.registry.run("order_total", {"order_id": 42})

    def test_optional_parameter_skipped(self):
        op = LookupOperation(
            name="greet",
            fn=lambda name="anon": name,
            parameters=(LookupParameter("name", str, required=False),),
        )
        assert op.invoke({}) == "anon"


class TestStepExecutors:
    """Tests for step executor implementations."""

    def _request(self, **payload):
        return StepRequest(stage="stageA", actor="maker", work_item=_item(**payload))

    def test_stub_satisfies_protocol(self):
        assert isinstance(StubExecutor("maker"), StepExecutor)
        assert isinstance(CallableStepExecutor(lambda r: None), StepExecutor)

    def test_request_copies_inputs(self):
        context = {"k": 1}
        request = StepRequest(stage="stageA", actor="maker", work_item=_item(), context=context)
        context["k"] = 2
        assert request.context["k"] == 1
        assert request.summary() == "stageA review of work item wi-1 by maker"

    def test_callable_executor_single_argument(self):
        executor = CallableStepExecutor(
            lambda request: StageOutcome(actor=request.actor, approved=True, reasoning="fine")
        )
        outcome = executor.execute(self._request())
        assert outcome.approved is True
        assert outcome.actor == "maker"

    def test_lookups_feed_decision(self):
        registry = LookupRegistry([
            LookupOperation("limit", lambda amount: amount <= 500, (LookupParameter("amount", int),)),
            LookupOperation("broken", lambda amount: 1 / 0, (LookupParameter("amount", int),)),
        ])

        def decide(request, lookups):
            return StageOutcome(actor=request.actor, approved=lookups.get("limit", False),
                                metadata={"lookups": sorted(lookups)})

        executor = CallableStepExecutor(
            decide,
            config=ExecutorConfig(enable_lookups=True, lookups=["limit", "broken"]),
            registry=registry,
        )
        outcome = executor.execute(self._request(amount=100))
        assert outcome.approved is True
        assert list(outcome.metadata["lookups"]) == ["limit"]

    def test_lookups_disabled_by_default(self):
        seen = {}

        class Recorder(BaseStepExecutor):
            def decide(self, request, lookups):
                seen.update(lookups)
                return StageOutcome(actor=request.actor, approved=True)

        registry = LookupRegistry([LookupOperation("limit", lambda: True)])
        Recorder(ExecutorConfig(lookups=["limit"]), registry).execute(self._request())
        assert seen == {}

    def test_max_lookups_bounds_calls(self):
        calls = []
        registry = LookupRegistry([
            LookupOperation(f"l{i}", (lambda i=i: calls.append(i))) for i in range(4)
        ])
        executor = CallableStepExecutor(
            lambda request, lookups: StageOutcome(actor="maker", approved=True),
            config=ExecutorConfig(enable_lookups=True, lookups=["l0", "l1", "l2", "l3"], max_lookups=2),
            registry=registry,
        )
        executor.execute(self._request())
        assert calls == [0, 1]

    def test_unknown_configured_lookup_rejected(self):
        with pytest.raises(KeyError):
            CallableStepExecutor(
                lambda request: None,
                config=ExecutorConfig(enable_lookups=True, lookups=["missing"]),
            )

    def test_base_executor_is_abstract(self):
        with pytest.raises(TypeError):
            BaseStepExecutor()
