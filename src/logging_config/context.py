"""Run Context Management.

Context-variable binding of request and work-item identifiers so every
log line emitted while a workflow run is in flight carries them. Each
thread and each asyncio task sees its own values.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
_work_item_id_var: ContextVar[str] = ContextVar("work_item_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_request_id() -> str:
    """Generate a unique request ID using UUID4."""
    return str(uuid.uuid4())


def get_request_id() -> str:
    return _request_id_var.get()


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_work_item_id() -> str:
    """Work item currently being processed on this thread/task, if any."""
    return _work_item_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all bound context values as a dictionary for log binding."""
    ctx = {}
    req_id = _request_id_var.get()
    if req_id:
        ctx["request_id"] = req_id
    corr_id = _correlation_id_var.get()
    if corr_id:
        ctx["correlation_id"] = corr_id
    work_item_id = _work_item_id_var.get()
    if work_item_id:
        ctx["work_item_id"] = work_item_id
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class RequestContext:
    """Context manager binding identifiers to all log entries inside it.

    Previous values are restored on exit, so contexts nest: an HTTP
    request context can wrap the per-work-item context of a run.

    Example:
        with RequestContext(work_item_id="wi-42"):
            logger.info("stage started")  # includes work_item_id
    """

    request_id: str = ""
    correlation_id: str = ""
    work_item_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.request_id:
            self.request_id = _request_id_var.get() or generate_request_id()
        if not self.correlation_id:
            self.correlation_id = _correlation_id_var.get() or self.request_id

    def __enter__(self) -> "RequestContext":
        self._tokens = [
            (_request_id_var, _request_id_var.set(self.request_id)),
            (_correlation_id_var, _correlation_id_var.set(self.correlation_id)),
            (_work_item_id_var, _work_item_id_var.set(self.work_item_id)),
            (_extra_context_var, _extra_context_var.set(
                {**_extra_context_var.get(), **self.extra}
            )),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the active context."""
        current = _extra_context_var.get()
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)
