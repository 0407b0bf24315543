"""Approval Flow: Session Memory.

Bounded, per-work-item conversational context shared by the stages of
one workflow run.
"""

from .config import SessionMemoryConfig
from .memory import Session, SessionMemory, Turn

__all__ = [
    "SessionMemoryConfig",
    "Session",
    "SessionMemory",
    "Turn",
]
