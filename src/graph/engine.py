"""Approval Flow: Graph Engine - State Graph."""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Generic, List, Mapping, Optional, TypeVar

from src.logging_config.performance import PerformanceTimer

from .config import END, GraphConfig
from .exceptions import ConfigurationError, GraphCycleError, RoutingError

logger = logging.getLogger(__name__)

S = TypeVar("S")


@dataclass(frozen=True)
class ConditionalEdge(Generic[S]):
    """Routing function plus its label -> node table."""

    route: Callable[[S], str]
    routes: Mapping[str, str]


class StateGraph(Generic[S]):
    """Builder for a named-node / labeled-edge state machine.

    Nodes are plain callables ``state -> state``. Each node has at most
    one outgoing definition: a fixed edge or a conditional edge. A node
    with neither is implicitly terminal.

    Usage:
        graph = StateGraph()
        graph.add_node("a", step_a)
        graph.add_node("b", step_b)
        graph.set_entry_point("a")
        graph.add_conditional_edges("a", pick, {"go": "b", "stop": END})
        graph.add_edge("b", END)
        final = graph.compile().invoke(initial)
    """

    def __init__(self, config: Optional[GraphConfig] = None):
        self.config = config or GraphConfig()
        self._nodes: Dict[str, Callable[[S], S]] = {}
        self._edges: Dict[str, str] = {}
        self._conditional: Dict[str, ConditionalEdge[S]] = {}
        self._entry_point: Optional[str] = None

    @property
    def nodes(self) -> List[str]:
        return list(self._nodes)

    @property
    def entry_point(self) -> Optional[str]:
        return self._entry_point

    def add_node(self, name: str, fn: Callable[[S], S]) -> "StateGraph[S]":
        """Register a node. Duplicate names are rejected."""
        if name == END:
            raise ConfigurationError(f"'{END}' is reserved and cannot be a node")
        if name in self._nodes:
            raise ConfigurationError(f"duplicate node: '{name}'")
        if not callable(fn):
            raise ConfigurationError(f"node '{name}' is not callable")
        self._nodes[name] = fn
        return self

    def set_entry_point(self, name: str) -> "StateGraph[S]":
        """Designate the first node. Checked at compile time."""
        self._entry_point = name
        return self

    def add_edge(self, from_node: str, to_node: str) -> "StateGraph[S]":
        """Register a fixed transition. ``to_node`` may be END."""
        self._check_outgoing(from_node)
        self._edges[from_node] = to_node
        return self

    def add_conditional_edges(
        self,
        from_node: str,
        route: Callable[[S], str],
        routes: Mapping[str, str],
    ) -> "StateGraph[S]":
        """Register a routing function and its label table for *from_node*."""
        self._check_outgoing(from_node)
        if not callable(route):
            raise ConfigurationError(f"routing function for '{from_node}' is not callable")
        self._conditional[from_node] = ConditionalEdge(
            route=route,
            routes=MappingProxyType(dict(routes)),
        )
        return self

    def _check_outgoing(self, from_node: str) -> None:
        if from_node == END:
            raise ConfigurationError(f"'{END}' cannot have outgoing edges")
        if from_node in self._edges or from_node in self._conditional:
            raise ConfigurationError(
                f"node '{from_node}' already has an outgoing edge definition"
            )

    def validate(self) -> List[str]:
        """Validate the definition. Returns a list of problems."""
        errors: List[str] = []

        if not self._nodes:
            errors.append("No nodes registered")

        if self._entry_point is None:
            errors.append("No entry point set")
        elif self._entry_point not in self._nodes:
            errors.append(f"Entry point '{self._entry_point}' is not a registered node")

        for src, dst in self._edges.items():
            if src not in self._nodes:
                errors.append(f"Edge references unknown source node: '{src}'")
            if dst != END and dst not in self._nodes:
                errors.append(f"Edge '{src}' -> '{dst}' references unknown target node")

        for src, edge in self._conditional.items():
            if src not in self._nodes:
                errors.append(f"Conditional edge references unknown source node: '{src}'")
            for label, dst in edge.routes.items():
                if dst != END and dst not in self._nodes:
                    errors.append(
                        f"Conditional edge '{src}' [{label}] -> '{dst}' "
                        f"references unknown target node"
                    )

        return errors

    def compile(self) -> "CompiledGraph[S]":
        """Freeze the definition into an executable graph."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                f"Invalid graph '{self.config.name}': {'; '.join(errors)}",
                problems=errors,
            )
        return CompiledGraph(
            nodes=dict(self._nodes),
            edges=dict(self._edges),
            conditional=dict(self._conditional),
            entry_point=self._entry_point,
            config=self.config,
        )

    def visualize(self) -> Dict[str, List[str]]:
        """Return an adjacency-list representation of the graph."""
        adj: Dict[str, List[str]] = {name: [] for name in self._nodes}
        for src, dst in self._edges.items():
            adj.setdefault(src, []).append(dst)
        for src, edge in self._conditional.items():
            for dst in edge.routes.values():
                if dst not in adj.setdefault(src, []):
                    adj[src].append(dst)
        return adj


class CompiledGraph(Generic[S]):
    """An executable, immutable snapshot of a StateGraph."""

    def __init__(
        self,
        nodes: Dict[str, Callable[[S], S]],
        edges: Dict[str, str],
        conditional: Dict[str, ConditionalEdge[S]],
        entry_point: str,
        config: GraphConfig,
    ):
        self._nodes = MappingProxyType(nodes)
        self._edges = MappingProxyType(edges)
        self._conditional = MappingProxyType(conditional)
        self.entry_point = entry_point
        self.config = config
        self.max_steps = config.max_steps or len(nodes)

    @property
    def nodes(self) -> List[str]:
        return list(self._nodes)

    def invoke(self, state: S, trace: Optional[List[str]] = None) -> S:
        """Run the machine from the entry point until END.

        Args:
            state: Initial state, handed to the entry node.
            trace: Optional list that receives visited node names in order.

        Returns:
            The state returned by the last executed node.

        Raises:
            ConfigurationError: A node name cannot be resolved.
            RoutingError: A routing function produced an unknown label.
            GraphCycleError: The run exceeded ``max_steps`` nodes.
        """
        current = self.entry_point
        steps = 0

        while current != END:
            fn = self._nodes.get(current)
            if fn is None:
                raise ConfigurationError(f"Node not found: '{current}'")

            if steps >= self.max_steps:
                raise GraphCycleError(
                    f"Graph '{self.config.name}' exceeded {self.max_steps} steps "
                    f"at node '{current}'",
                    node=current,
                    steps=steps,
                    state=state,
                )
            steps += 1

            if trace is not None:
                trace.append(current)

            with PerformanceTimer(
                f"{self.config.name}.{current}",
                threshold_ms=self.config.slow_node_threshold_ms,
            ):
                state = fn(state)

            nxt = self._next_node(current, state)
            logger.debug("Graph '%s': %s -> %s", self.config.name, current, nxt)
            current = nxt

        return state

    def _next_node(self, current: str, state: S) -> str:
        edge = self._conditional.get(current)
        if edge is not None:
            label = edge.route(state)
            target = edge.routes.get(label)
            if target is None:
                raise RoutingError(
                    f"Routing from '{current}' produced unknown label '{label}' "
                    f"(known: {sorted(edge.routes)})",
                    node=current,
                    label=label,
                    state=state,
                )
            return target

        if current in self._edges:
            return self._edges[current]

        return END
