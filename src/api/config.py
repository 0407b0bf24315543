"""API Configuration.

Settings for the REST transport in front of the approval workflow.
"""

from dataclasses import dataclass, field


@dataclass
class APIConfig:
    """Core API settings."""

    title: str = "Approval Flow API"
    version: str = "1.0.0"
    description: str = "Multi-stage approval workflow with audit trail"
    prefix: str = "/api/v1"
    docs_url: str = "/docs"
    cors_origins: list[str] = field(default_factory=lambda: [
        "http://localhost:8000",   # API self-reference
        "http://localhost:3000",   # Local dashboards
    ])
    cors_methods: list[str] = field(default_factory=lambda: ["GET", "POST", "DELETE", "OPTIONS"])
    cors_headers: list[str] = field(default_factory=lambda: ["*"])
    default_audit_limit: int = 100
    max_audit_limit: int = 1000
    # Wait for queued audit records before answering an audit query.
    audit_flush_timeout_seconds: float = 1.0
    # Include exception text in 500 responses.
    expose_error_detail: bool = True


DEFAULT_API_CONFIG = APIConfig()
