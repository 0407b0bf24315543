"""FastAPI Application Factory.

Creates and configures the Approval Flow API application with its
middleware stack: security headers, request tracing, and CORS.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.dependencies import ServiceContainer
from src.api.errors import register_exception_handlers
from src.api.models import HealthResponse
from src.api.routes import approvals
from src.logging_config import LoggingConfig, configure_logging
from src.logging_config.middleware import RequestTracingMiddleware

logger = logging.getLogger(__name__)


# ── Security Headers Middleware ───────────────────────────────────────


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to all HTTP responses."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if os.environ.get("APPROVAL_FLOW_ENABLE_HSTS", "").lower() == "true":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response


# ── App Factory ──────────────────────────────────────────────────────


def create_app(
    container: ServiceContainer,
    config: Optional[APIConfig] = None,
    logging_config: Optional[LoggingConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Middleware stack (outermost → innermost):
        SecurityHeaders → RequestTracing → CORS → App

    Args:
        container: Wired workflow services, executors included.
        config: API configuration. Uses defaults if not provided.
        logging_config: Applied at startup. Environment overrides apply.

    Returns:
        Configured FastAPI application.
    """
    config = config or DEFAULT_API_CONFIG

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ── Startup ──
        configure_logging(logging_config)
        container.start()
        logger.info("Approval Flow API starting up")
        yield
        # ── Shutdown ──
        logger.info("Approval Flow API shutting down")
        container.stop()

    app = FastAPI(
        title=config.title,
        version=config.version,
        description=config.description,
        docs_url=config.docs_url,
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container
    app.state.api_config = config

    # ── Middleware stack ──────────────────────────────────────────
    # add_middleware prepends, so order here is innermost-first.

    cors_origins = os.environ.get("APPROVAL_FLOW_CORS_ORIGINS", "").split(",")
    cors_origins = [o.strip() for o in cors_origins if o.strip()] or config.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=config.cors_methods,
        allow_headers=config.cors_headers,
    )
    app.add_middleware(RequestTracingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    register_exception_handlers(app, config)

    # ── Health check ─────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        sink = container.audit_sink
        components = {
            "audit_sink": "ok" if sink.is_running else "stopped",
            "audit_stats": sink.stats,
            "sessions": f"ok ({container.memory.session_count} active)",
            "pipeline": container.pipeline.describe(),
        }
        return HealthResponse(
            status="ok" if sink.is_running else "degraded",
            version=config.version,
            components=components,
        )

    # ── Route modules ────────────────────────────────────────────

    app.include_router(approvals.router, prefix=config.prefix)

    logger.info(f"Approval Flow API v{config.version} initialized")
    return app
