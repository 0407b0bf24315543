"""Session memory: ordered, size-bounded turn history per work item."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from .config import SessionMemoryConfig

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Turn:
    """One request/response exchange recorded by a stage."""

    request: str
    response: str
    stage: str = ""
    actor: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "request": self.request,
            "response": self.response,
            "stage": self.stage,
            "actor": self.actor,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Session:
    """Turn history for one work item. Oldest turns are evicted first."""

    session_id: str
    max_turns: int = 50
    created_at: datetime = field(default_factory=_utcnow)
    last_accessed_at: datetime = field(default_factory=_utcnow)
    _turns: deque = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self._turns is None:
            self._turns = deque(maxlen=self.max_turns)

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    @property
    def turn_count(self) -> int:
        return len(self._turns)

    def _append(self, turn: Turn) -> None:
        self._turns.append(turn)


class SessionMemory:
    """Thread-safe session store keyed by work-item identifier.

    One lock guards the session map and every turn deque, so runs for
    different work items can append concurrently without corrupting the
    store. Constructed once per process and injected where needed.
    """

    def __init__(self, config: Optional[SessionMemoryConfig] = None):
        self.config = config or SessionMemoryConfig()
        self._sessions: OrderedDict[str, Session] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ── Session access ────────────────────────────────────────────────

    def get_or_create(self, work_item_id: str) -> Session:
        """Return the session for *work_item_id*, creating it if absent."""
        with self._lock:
            return self._get_or_create_unlocked(work_item_id)

    def get(self, work_item_id: str) -> Optional[Session]:
        """Return the session if it exists. Does not create one."""
        with self._lock:
            session = self._sessions.get(work_item_id)
            if session is not None:
                self._touch_unlocked(work_item_id, session)
            return session

    def exists(self, work_item_id: str) -> bool:
        """Pure lookup: does not create, touch, or reorder."""
        with self._lock:
            return work_item_id in self._sessions

    def append(self, work_item_id: str, turn: Turn) -> Session:
        """Append a turn, evicting the oldest beyond ``max_turns``."""
        with self._lock:
            session = self._get_or_create_unlocked(work_item_id)
            session._append(turn)
            return session

    def history(self, work_item_id: str, limit: Optional[int] = None) -> list[Turn]:
        """Return turns oldest-first; *limit* keeps only the most recent ones."""
        with self._lock:
            session = self._sessions.get(work_item_id)
            if session is None:
                return []
            self._touch_unlocked(work_item_id, session)
            turns = session.turns
        if limit is not None:
            turns = turns[-limit:] if limit > 0 else []
        return turns

    def clear(self, work_item_id: str) -> bool:
        """Remove a session. Returns True if it existed."""
        with self._lock:
            removed = self._sessions.pop(work_item_id, None)
        if removed is not None:
            logger.debug("Cleared session for work item %s", work_item_id)
        return removed is not None

    def clear_all(self) -> int:
        """Remove every session (test/reset use). Returns the count removed."""
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        logger.info("Cleared all %d sessions", count)
        return count

    # ── Retention ─────────────────────────────────────────────────────

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop sessions idle longer than ``ttl_seconds``. Returns the count."""
        if self.config.ttl_seconds is None:
            return 0
        cutoff = (now or _utcnow()) - timedelta(seconds=self.config.ttl_seconds)
        with self._lock:
            expired = [
                sid for sid, s in self._sessions.items()
                if s.last_accessed_at < cutoff
            ]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("Purged %d idle sessions", len(expired))
        return len(expired)

    # ── Internals (caller holds the lock) ────────────────────────────

    def _get_or_create_unlocked(self, work_item_id: str) -> Session:
        session = self._sessions.get(work_item_id)
        if session is None:
            session = Session(session_id=work_item_id, max_turns=self.config.max_turns)
            self._sessions[work_item_id] = session
            logger.debug("Created session for work item %s", work_item_id)
            self._evict_unlocked()
        else:
            self._touch_unlocked(work_item_id, session)
        return session

    def _touch_unlocked(self, work_item_id: str, session: Session) -> None:
        session.last_accessed_at = _utcnow()
        self._sessions.move_to_end(work_item_id)

    def _evict_unlocked(self) -> None:
        limit = self.config.max_sessions
        if limit is None:
            return
        while len(self._sessions) > limit:
            sid, _ = self._sessions.popitem(last=False)
            logger.warning("Session limit %d reached; evicted %s", limit, sid)
