"""Structured Logging & Run Tracing.

JSON or console logging for the approval workflow, with work-item and
request context bound to every record emitted during a run.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import RequestContext, generate_request_id
from src.logging_config.performance import PerformanceTimer, log_performance
from src.logging_config.setup import configure_logging, get_logger

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "RequestContext",
    "PerformanceTimer",
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "log_performance",
]
