"""Service wiring and FastAPI dependencies.

The container owns the long-lived collaborators of the workflow
(session memory, audit store and sink, pipeline, runner). It is built
once by the caller, with the decision executors injected, and attached
to the application.
"""

import logging
from typing import Mapping, Optional

from fastapi import Request

from src.approval_workflow.config import ApprovalWorkflowConfig
from src.approval_workflow.executors import StepExecutor
from src.approval_workflow.pipeline import ApprovalPipeline
from src.approval_workflow.runner import WorkflowRunner
from src.audit.config import AuditConfig
from src.audit.sink import AuditSink
from src.audit.store import InMemoryAuditStore
from src.session_memory.config import SessionMemoryConfig
from src.session_memory.memory import SessionMemory

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Explicitly constructed object graph behind the API.

    Usage::

        container = ServiceContainer(maker, checker, fulfiller)
        app = create_app(container)
    """

    def __init__(
        self,
        stage_a: StepExecutor,
        stage_b: StepExecutor,
        stage_c: StepExecutor,
        workflow_config: Optional[ApprovalWorkflowConfig] = None,
        audit_config: Optional[AuditConfig] = None,
        memory_config: Optional[SessionMemoryConfig] = None,
        routes: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        audit_config = audit_config or AuditConfig()
        self.memory = SessionMemory(memory_config)
        self.audit_store = InMemoryAuditStore(audit_config)
        self.audit_sink = AuditSink(self.audit_store, audit_config)
        self.pipeline = ApprovalPipeline(
            stage_a,
            stage_b,
            stage_c,
            audit_sink=self.audit_sink,
            memory=self.memory,
            config=workflow_config,
            routes=routes,
        )
        self.runner = WorkflowRunner(self.pipeline)

    def start(self) -> None:
        self.audit_sink.start()

    def stop(self) -> None:
        """Drain pending audit records and stop the dispatcher."""
        self.audit_sink.stop(drain=True)
        logger.info("Service container stopped: %s", self.audit_sink.stats)


def get_container(request: Request) -> ServiceContainer:
    """Return the container attached to the running application."""
    return request.app.state.container
