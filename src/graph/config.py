"""Approval Flow: Graph Engine - Configuration."""

from dataclasses import dataclass
from typing import Optional

# Reserved successor name meaning "stop". Never a registered node.
END = "__end__"


@dataclass
class GraphConfig:
    """Execution limits for a compiled graph."""

    name: str = "graph"
    # None bounds a run by the number of registered nodes.
    max_steps: Optional[int] = None
    slow_node_threshold_ms: float = 5000.0
