"""Logging Configuration.

Settings for structured logging, log levels, and output formats.
"""

from dataclasses import dataclass, field
from enum import Enum


class LogLevel(str, Enum):
    """Log level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format."""
    JSON = "json"
    CONSOLE = "console"


# Record attributes copied into JSON output when a caller passes them via extra=
EXTRA_FIELDS = (
    "work_item_id",
    "stage",
    "actor",
    "action",
    "status",
    "duration_ms",
    "status_code",
    "method",
    "path",
)


@dataclass
class LoggingConfig:
    """Structured logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    slow_threshold_ms: float = 1000.0
    exclude_paths: list[str] = field(default_factory=lambda: ["/health"])
    service_name: str = "approval-flow"
    quiet_loggers: list[str] = field(
        default_factory=lambda: ["urllib3", "asyncio", "httpx", "uvicorn.access"]
    )


DEFAULT_LOGGING_CONFIG = LoggingConfig()
