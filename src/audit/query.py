"""Query builder for audit record search and filtering."""

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

from .events import AuditRecord

logger = logging.getLogger(__name__)


class AuditQuery:
    """Builder-pattern query interface for audit records.

    Supports method chaining for composing queries:
        results = (AuditQuery(store)
            .filter_by_work_item("wi-42")
            .filter_by_stage("stageB")
            .sort_descending()
            .limit(20)
            .execute())
    """

    def __init__(self, store: Any) -> None:
        """Initialize query against a store.

        Args:
            store: Any object exposing ``get_all_records()``.
        """
        self._store = store
        self._filters: List[Callable[[AuditRecord], bool]] = []
        self._sort_ascending: bool = True
        self._limit: Optional[int] = None

    def filter_by_work_item(self, work_item_id: str) -> "AuditQuery":
        self._filters.append(lambda r: r.work_item_id == work_item_id)
        return self

    def filter_by_stage(self, stage: str) -> "AuditQuery":
        self._filters.append(lambda r: r.stage == stage)
        return self

    def filter_by_actor(self, actor: str) -> "AuditQuery":
        self._filters.append(lambda r: r.actor == actor)
        return self

    def filter_by_action(self, action: str) -> "AuditQuery":
        """Filter records by action tag (exact match).

        Args:
            action: Action string or ``AuditAction`` member.

        Returns:
            Self for chaining.
        """
        action = str(getattr(action, "value", action))
        self._filters.append(lambda r: r.action == action)
        return self

    def filter_by_time_range(
        self, start: datetime, end: datetime
    ) -> "AuditQuery":
        """Filter records within a time range (inclusive).

        Args:
            start: Start of the time range.
            end: End of the time range.

        Returns:
            Self for chaining.
        """
        self._filters.append(lambda r: start <= r.timestamp <= end)
        return self

    def filter(self, predicate: Callable[[AuditRecord], bool]) -> "AuditQuery":
        """Add a custom filter predicate."""
        self._filters.append(predicate)
        return self

    def sort_ascending(self) -> "AuditQuery":
        self._sort_ascending = True
        return self

    def sort_descending(self) -> "AuditQuery":
        self._sort_ascending = False
        return self

    def limit(self, n: int) -> "AuditQuery":
        self._limit = n
        return self

    def _matching(self) -> List[AuditRecord]:
        results = self._store.get_all_records()
        for f in self._filters:
            results = [r for r in results if f(r)]
        return results

    def execute(self) -> List[AuditRecord]:
        """Execute the query and return matching records."""
        results = self._matching()
        results.sort(key=lambda r: r.timestamp, reverse=not self._sort_ascending)

        if self._limit is not None:
            results = results[: self._limit]

        logger.debug("Audit query returned %d results", len(results))
        return results

    def count(self) -> int:
        """Number of matching records, ignoring ``limit``."""
        return len(self._matching())
