"""Exception handlers mapping workflow errors to structured JSON.

Business outcomes (rejected, failed) are regular 200 responses; only
engine-level errors reach these handlers.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.models import ErrorResponse
from src.graph.exceptions import ConfigurationError, RoutingError, WorkflowError
from src.logging_config.context import get_request_id

logger = logging.getLogger(__name__)

ERROR_CODES = {
    ConfigurationError: "CONFIGURATION_ERROR",
    RoutingError: "ROUTING_ERROR",
}


def create_error_response(
    exc: WorkflowError,
    status_code: int = 500,
    config: Optional[APIConfig] = None,
) -> JSONResponse:
    """Build a standardized error response for a workflow exception."""
    config = config or DEFAULT_API_CONFIG
    code = next(
        (c for exc_type, c in ERROR_CODES.items() if isinstance(exc, exc_type)),
        "WORKFLOW_ERROR",
    )
    body = ErrorResponse(
        error=type(exc).__name__,
        code=code,
        detail=exc.message if config.expose_error_detail else None,
        request_id=get_request_id() or None,
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def register_exception_handlers(app: FastAPI, config: Optional[APIConfig] = None) -> None:
    """Register workflow exception handlers on a FastAPI application."""
    config = config or DEFAULT_API_CONFIG

    async def handle_workflow_error(request: Request, exc: WorkflowError) -> JSONResponse:
        logger.error(
            "API Error [%s] on %s %s: %s",
            type(exc).__name__, request.method, request.url.path, exc.message,
        )
        return create_error_response(exc, config=config)

    app.add_exception_handler(WorkflowError, handle_workflow_error)
    logger.debug("Registered workflow exception handlers")
