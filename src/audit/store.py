"""In-memory audit destination."""

import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, List, Optional

from .config import AuditConfig
from .events import AuditRecord

logger = logging.getLogger(__name__)


class InMemoryAuditStore:
    """Thread-safe record store keyed by work item.

    Each work item keeps at most ``max_records_per_work_item`` records;
    older ones are evicted first. Records older than
    ``retention_seconds`` are removed by :meth:`purge_expired`.
    """

    def __init__(self, config: Optional[AuditConfig] = None) -> None:
        self._config = config or AuditConfig()
        self._records: Dict[str, Deque[AuditRecord]] = {}
        self._evicted = 0
        self._lock = threading.Lock()

    def persist(self, record: AuditRecord) -> None:
        with self._lock:
            bucket = self._records.get(record.work_item_id)
            if bucket is None:
                bucket = deque()
                self._records[record.work_item_id] = bucket
            bucket.append(record)
            cap = self._config.max_records_per_work_item
            while cap is not None and len(bucket) > cap:
                bucket.popleft()
                self._evicted += 1

    def find_by_work_item(self, work_item_id: str) -> List[AuditRecord]:
        """Records of one work item, in arrival order."""
        with self._lock:
            return list(self._records.get(work_item_id, ()))

    def find_all(self) -> List[AuditRecord]:
        """All records ordered by timestamp."""
        with self._lock:
            records = [r for bucket in self._records.values() for r in bucket]
        records.sort(key=lambda r: r.timestamp)
        return records

    def get_all_records(self) -> List[AuditRecord]:
        return self.find_all()

    @property
    def count(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._records.values())

    @property
    def evicted(self) -> int:
        with self._lock:
            return self._evicted

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Remove records older than the retention window.

        Returns:
            Number of records removed.
        """
        retention = self._config.retention_seconds
        if retention is None:
            return 0
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=retention)
        removed = 0
        with self._lock:
            for work_item_id in list(self._records):
                bucket = self._records[work_item_id]
                kept = deque(r for r in bucket if r.timestamp >= cutoff)
                removed += len(bucket) - len(kept)
                if kept:
                    self._records[work_item_id] = kept
                else:
                    del self._records[work_item_id]
        if removed:
            logger.info("Purged %d expired audit records", removed)
        return removed
