"""Approval Flow HTTP API.

Thin FastAPI transport over the approval workflow:
- POST a work item and receive its final result
- Read a work item's audit trail and session context

Example:
    from src.api import ServiceContainer, create_app
    container = ServiceContainer(maker, checker, fulfiller)
    app = create_app(container)
"""

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.dependencies import ServiceContainer, get_container
from src.api.models import (
    AuditRecordResponse,
    AuditTrailResponse,
    ErrorResponse,
    HealthResponse,
    SessionClearedResponse,
    SessionResponse,
    StageOutcomeResponse,
    SubmitRequest,
    SubmitResponse,
    TurnResponse,
)
from src.api.errors import register_exception_handlers
from src.api.app import create_app

__all__ = [
    # Config
    "APIConfig",
    "DEFAULT_API_CONFIG",
    # Wiring
    "ServiceContainer",
    "get_container",
    # Models
    "AuditRecordResponse",
    "AuditTrailResponse",
    "ErrorResponse",
    "HealthResponse",
    "SessionClearedResponse",
    "SessionResponse",
    "StageOutcomeResponse",
    "SubmitRequest",
    "SubmitResponse",
    "TurnResponse",
    # App
    "register_exception_handlers",
    "create_app",
]
