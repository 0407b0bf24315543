"""Workflow exception hierarchy.

Every error raised by the graph engine, the approval pipeline and the
workflow runner derives from WorkflowError so callers can catch the
whole family at one seam.
"""

from typing import Any, List, Optional


class WorkflowError(Exception):
    """Base exception for all workflow errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(WorkflowError):
    """Raised when a graph definition is malformed.

    Fatal at build time: a graph with problems is never compiled.
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []


class RoutingError(WorkflowError):
    """Raised when a run cannot determine its next node.

    Carries the node that was routing, the label it produced and the
    state at the moment of failure. The workflow runner attaches the
    projected result as ``result`` before re-raising.
    """

    def __init__(
        self,
        message: str,
        node: str = "",
        label: Optional[str] = None,
        state: Any = None,
    ):
        super().__init__(message)
        self.node = node
        self.label = label
        self.state = state
        self.result: Any = None


class GraphCycleError(RoutingError):
    """Raised when a run exceeds its step bound (cyclic definition)."""

    def __init__(self, message: str, node: str = "", steps: int = 0, state: Any = None):
        super().__init__(message, node=node, state=state)
        self.steps = steps


class StepExecutionError(WorkflowError):
    """A stage's StepExecutor failed unexpectedly.

    Raised and caught at the node boundary; it never escapes a run.
    """

    def __init__(self, stage: str, actor: str, cause: BaseException):
        super().__init__(f"{type(cause).__name__}: {cause}")
        self.stage = stage
        self.actor = actor
        self.cause = cause


class WorkflowStateError(WorkflowError):
    """Raised on misuse of a WorkflowState (overwrite, sealed mutation)."""
