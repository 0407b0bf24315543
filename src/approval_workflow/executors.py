"""Approval Flow: Approval Workflow - Step Executors.

The contract each stage invokes to obtain a decision, plus a base class
that can gather named lookups before deciding. How a decision is made
(rules, prompts, model calls) is left entirely to implementations.
"""

import copy
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from src.session_memory.memory import Turn

from .state import StageOutcome, WorkItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepRequest:
    """Everything a stage hands to its executor.

    ``context`` is a deep copy and ``prior_outcomes`` holds frozen
    outcomes; executors cannot reach back into the run state through
    either.
    """

    stage: str
    actor: str
    work_item: WorkItem
    context: Mapping[str, Any] = field(default_factory=dict)
    prior_outcomes: Mapping[str, StageOutcome] = field(default_factory=dict)
    history: Tuple[Turn, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "context", MappingProxyType(copy.deepcopy(dict(self.context))))
        object.__setattr__(self, "prior_outcomes", MappingProxyType(dict(self.prior_outcomes)))
        object.__setattr__(self, "history", tuple(self.history))

    @property
    def work_item_id(self) -> str:
        return self.work_item.work_item_id

    def summary(self) -> str:
        """One-line description stored as the session turn request."""
        prior = ", ".join(
            f"{stage}={'approved' if o.approved else 'rejected'}"
            for stage, o in self.prior_outcomes.items()
        )
        text = f"{self.stage} review of work item {self.work_item_id} by {self.actor}"
        return f"{text} (prior: {prior})" if prior else text


@runtime_checkable
class StepExecutor(Protocol):
    """Decision maker invoked by one pipeline stage."""

    def execute(self, request: StepRequest) -> StageOutcome:
        ...


# ── Lookups ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LookupParameter:
    """A named argument resolved from the work item payload."""

    name: str
    type: type = object
    required: bool = True
    description: str = ""


@dataclass(frozen=True)
class LookupOperation:
    """A named validation or data lookup an executor may run."""

    name: str
    fn: Callable[..., Any]
    parameters: Tuple[LookupParameter, ...] = ()
    description: str = ""

    def resolve_arguments(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Pick and type-check this operation's arguments from *payload*.

        Raises:
            ValueError: A required parameter is missing.
            TypeError: A parameter has the wrong type.
        """
        kwargs: Dict[str, Any] = {}
        for param in self.parameters:
            if param.name not in payload:
                if param.required:
                    raise ValueError(
                        f"lookup '{self.name}' missing required parameter '{param.name}'"
                    )
                continue
            value = payload[param.name]
            if not isinstance(value, param.type):
                raise TypeError(
                    f"lookup '{self.name}' parameter '{param.name}' expects "
                    f"{param.type.__name__}, got {type(value).__name__}"
                )
            kwargs[param.name] = value
        return kwargs

    def invoke(self, payload: Mapping[str, Any]) -> Any:
        return self.fn(**self.resolve_arguments(payload))


class LookupRegistry:
    """Explicit, finite set of lookups available to executors."""

    def __init__(self, operations: Optional[List[LookupOperation]] = None):
        self._operations: Dict[str, LookupOperation] = {}
        for op in operations or []:
            self.register(op)

    def register(self, operation: LookupOperation) -> None:
        if operation.name in self._operations:
            raise ValueError(f"lookup already registered: '{operation.name}'")
        self._operations[operation.name] = operation

    def get(self, name: str) -> LookupOperation:
        try:
            return self._operations[name]
        except KeyError:
            raise KeyError(f"unknown lookup: '{name}'") from None

    @property
    def names(self) -> List[str]:
        return list(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    def run(self, name: str, payload: Mapping[str, Any]) -> Any:
        return self.get(name).invoke(payload)


# ── Base executors ───────────────────────────────────────────────────


@dataclass
class ExecutorConfig:
    """Lookup behavior of a BaseStepExecutor."""

    enable_lookups: bool = False
    lookups: List[str] = field(default_factory=list)
    max_lookups: int = 5


class BaseStepExecutor(ABC):
    """Executor that optionally runs named lookups before deciding.

    Lookups run sequentially, at most ``max_lookups`` of them, and a
    failing lookup is logged and skipped. Subclasses implement
    :meth:`decide`.
    """

    def __init__(
        self,
        config: Optional[ExecutorConfig] = None,
        registry: Optional[LookupRegistry] = None,
    ):
        self.config = config or ExecutorConfig()
        self.registry = registry or LookupRegistry()
        if self.config.enable_lookups:
            for name in self.config.lookups:
                self.registry.get(name)

    def execute(self, request: StepRequest) -> StageOutcome:
        lookups = self._run_lookups(request) if self.config.enable_lookups else {}
        return self.decide(request, lookups)

    @abstractmethod
    def decide(self, request: StepRequest, lookups: Mapping[str, Any]) -> StageOutcome:
        """Produce the stage outcome from the request and lookup results."""

    def _run_lookups(self, request: StepRequest) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        names = self.config.lookups[: max(self.config.max_lookups, 0)]
        skipped = len(self.config.lookups) - len(names)
        if skipped:
            logger.warning(
                "%s: %d lookups over the limit of %d were not run",
                request.stage, skipped, self.config.max_lookups,
            )
        for name in names:
            try:
                results[name] = self.registry.run(name, request.work_item.payload)
            except Exception as exc:
                logger.warning(
                    "Lookup '%s' failed for work item %s: %s",
                    name, request.work_item_id, exc,
                    extra={"stage": request.stage, "actor": request.actor},
                )
        return results


class CallableStepExecutor(BaseStepExecutor):
    """Adapts a plain function into a StepExecutor.

    The function receives ``(request)``, or ``(request, lookups)`` when it
    accepts a second positional argument.
    """

    def __init__(
        self,
        fn: Callable[..., StageOutcome],
        config: Optional[ExecutorConfig] = None,
        registry: Optional[LookupRegistry] = None,
    ):
        super().__init__(config, registry)
        self._fn = fn
        self._wants_lookups = _positional_arity(fn) >= 2

    def decide(self, request: StepRequest, lookups: Mapping[str, Any]) -> StageOutcome:
        if self._wants_lookups:
            return self._fn(request, lookups)
        return self._fn(request)


def _positional_arity(fn: Callable[..., Any]) -> int:
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return 1
    kinds = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return 2
    return sum(1 for p in params if p.kind in kinds)
