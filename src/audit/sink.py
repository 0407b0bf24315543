"""Asynchronous, non-blocking audit sink.

Nodes hand records to the sink and move on; a dedicated dispatcher
thread delivers them to the destination. Delivery is best effort: any
failure is contained here, logged, and counted, and never reaches the
workflow.
"""

import logging
import queue
import threading
from typing import Any, Dict, Mapping, Optional, Protocol

from .config import AuditConfig
from .events import AuditRecord

logger = logging.getLogger(__name__)

_STOP = object()


class AuditError(Exception):
    """Failure while emitting or delivering an audit record."""


class AuditDestination(Protocol):
    """Downstream collaborator that stores or forwards audit records."""

    def persist(self, record: AuditRecord) -> None:
        ...


class AuditSink:
    """Fire-and-forget audit recorder backed by a single dispatcher thread.

    A single consumer drains the queue in FIFO order, so records for the
    same work item reach the destination in emission order. Records of
    different work items interleave freely.

    Usage:
        sink = AuditSink(InMemoryAuditStore())
        sink.emit("stageA", "maker", "execution_started", "...", "wi-1", {})
        sink.flush(timeout=1.0)
        sink.stop()
    """

    def __init__(
        self,
        destination: AuditDestination,
        config: Optional[AuditConfig] = None,
        autostart: bool = True,
    ) -> None:
        self._config = config or AuditConfig()
        self._destination = destination
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=self._config.queue_maxsize)
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._pending = 0
        self._accepted = 0
        self._delivered = 0
        self._failed = 0
        self._dropped = 0
        if autostart:
            self.start()

    @property
    def config(self) -> AuditConfig:
        return self._config

    @property
    def destination(self) -> AuditDestination:
        return self._destination

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "accepted": self._accepted,
                "delivered": self._delivered,
                "failed": self._failed,
                "dropped": self._dropped,
                "pending": self._pending,
            }

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the dispatcher thread. Idempotent.

        Raises:
            AuditError: If a previous dispatcher has not exited yet.
        """
        with self._lock:
            if self._running:
                return
            if self._thread is not None and self._thread.is_alive():
                raise AuditError("previous audit dispatcher is still running")
            self._running = True
            self._thread = threading.Thread(
                target=self._run,
                name=self._config.dispatcher_name,
                daemon=True,
            )
            self._thread.start()
        logger.debug("Audit dispatcher started")

    def stop(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        """Stop accepting records and shut the dispatcher down.

        Args:
            drain: Deliver everything already queued before stopping.
                When False, queued records are discarded and counted
                as dropped.
            timeout: Seconds to wait for the dispatcher to exit.
        """
        timeout = self._config.stop_timeout_seconds if timeout is None else timeout
        with self._lock:
            if not self._running:
                return
            self._running = False
            thread = self._thread

        if not drain:
            self._discard_queued()

        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.error("Audit queue still full after %.1fs; dispatcher not signalled", timeout)

        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Audit dispatcher did not stop within %.1fs", timeout)
        logger.debug("Audit dispatcher stopped")

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every accepted record has been attempted.

        Returns:
            True if the queue drained within *timeout*.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def __enter__(self) -> "AuditSink":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    # ── Emission ──────────────────────────────────────────────────────

    def emit(
        self,
        stage: str,
        actor: str,
        action: str,
        details: str = "",
        work_item_id: str = "",
        context_snapshot: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        """Schedule a record for delivery and return immediately.

        Never raises. Returns the record id, or None if the record was
        not accepted (sink disabled, stopped, or full).
        """
        if not self._config.enabled:
            return None

        try:
            record = AuditRecord(
                stage=stage,
                actor=actor,
                action=str(getattr(action, "value", action)),
                details=details,
                work_item_id=work_item_id,
                context_snapshot=context_snapshot or {},
            )
            self._enqueue(record)
        except AuditError as exc:
            self._drop(exc, action, work_item_id)
            return None
        except Exception as exc:
            self._drop(AuditError(f"could not build audit record: {exc}"), action, work_item_id)
            return None
        return record.record_id

    def _enqueue(self, record: AuditRecord) -> None:
        with self._lock:
            if not self._running:
                raise AuditError("audit sink is not running")
            try:
                self._queue.put_nowait(record)
            except queue.Full:
                raise AuditError(
                    f"audit queue full ({self._config.queue_maxsize} records)"
                ) from None
            self._pending += 1
            self._accepted += 1

    def _drop(self, exc: AuditError, action: Any, work_item_id: str) -> None:
        with self._lock:
            self._dropped += 1
        logger.error(
            "Dropped audit record: %s (action=%s, work_item=%s)",
            exc, action, work_item_id,
        )

    def _discard_queued(self) -> None:
        discarded = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                continue
            discarded += 1
        if discarded:
            with self._idle:
                self._pending -= discarded
                self._dropped += discarded
                self._idle.notify_all()
            logger.warning("Discarded %d undelivered audit records", discarded)

    # ── Dispatcher ────────────────────────────────────────────────────

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            try:
                self._deliver(item)
            finally:
                with self._idle:
                    self._pending -= 1
                    if self._pending == 0:
                        self._idle.notify_all()

    def _deliver(self, record: AuditRecord) -> None:
        if self._config.log_to_console:
            logger.info(
                "AUDIT: [%s] %s - %s - %s - work item: %s - %s",
                record.timestamp.isoformat(),
                record.stage,
                record.actor,
                record.action,
                record.work_item_id,
                record.details,
            )
        try:
            self._destination.persist(record)
        except Exception as exc:
            with self._lock:
                self._failed += 1
            logger.error(
                "Failed to deliver audit record %s (action=%s, work_item=%s): %s",
                record.record_id,
                record.action,
                record.work_item_id,
                exc,
                exc_info=True,
            )
            return
        with self._lock:
            self._delivered += 1
