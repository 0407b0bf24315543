"""Audit record model."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping


@dataclass(frozen=True)
class AuditRecord:
    """Write-once record of one workflow stage transition."""

    stage: str
    actor: str
    action: str
    details: str = ""
    work_item_id: str = ""
    context_snapshot: Mapping[str, Any] = field(default_factory=dict)
    record_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "context_snapshot", MappingProxyType(dict(self.context_snapshot))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "stage": self.stage,
            "actor": self.actor,
            "action": self.action,
            "details": self.details,
            "work_item_id": self.work_item_id,
            "context_snapshot": dict(self.context_snapshot),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditRecord":
        return cls(
            record_id=data["record_id"],
            stage=data.get("stage", ""),
            actor=data.get("actor", ""),
            action=data["action"],
            details=data.get("details", ""),
            work_item_id=data.get("work_item_id", ""),
            context_snapshot=data.get("context_snapshot", {}),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
