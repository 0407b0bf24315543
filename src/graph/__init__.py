"""Approval Flow: Graph Engine.

Named-node / labeled-edge state machine executor, generic over the
state object threaded through its nodes.
"""

from .config import END, GraphConfig
from .engine import CompiledGraph, StateGraph
from .exceptions import (
    ConfigurationError,
    GraphCycleError,
    RoutingError,
    StepExecutionError,
    WorkflowError,
    WorkflowStateError,
)

__all__ = [
    # Config
    "END",
    "GraphConfig",
    # Engine
    "StateGraph",
    "CompiledGraph",
    # Errors
    "WorkflowError",
    "ConfigurationError",
    "RoutingError",
    "GraphCycleError",
    "StepExecutionError",
    "WorkflowStateError",
]
