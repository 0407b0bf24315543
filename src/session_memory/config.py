"""Approval Flow: Session Memory - Configuration."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class SessionMemoryConfig:
    """Bounds and retention for the in-process session store."""

    max_turns: int = 50
    # Idle expiry applied by purge_expired(); None keeps sessions until cleared.
    ttl_seconds: Optional[float] = 3600.0
    # Least-recently-accessed sessions are evicted beyond this count.
    max_sessions: Optional[int] = 10_000

    def __post_init__(self) -> None:
        if self.max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        if self.max_sessions is not None and self.max_sessions < 1:
            raise ValueError("max_sessions must be >= 1")
