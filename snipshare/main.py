"""
SnipShare — FastAPI Application Factory
=======================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() builds the AppServices container (backend client, lease
       pool, session registry), registers middleware, exception handlers and
       routers. uvicorn serves the module-level `app` (snipshare.main:app).

Application Architecture:
    ┌───────────────────────────────────────────────────────┐
    │                     FastAPI App                       │
    │                                                       │
    │  Middleware:  Request ID → Logging → CORS             │
    │                                                       │
    │  Routes:      /api/auth/*   /auth/callback            │
    │               /api/profile* /api/feed*                │
    │               /api/snippets* /api/comments/*  /health │
    │                                                       │
    │  app.state.services: AppServices                      │
    │     BackendClient ← LeasePool ← SessionRegistry       │
    └───────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration check, pool prewarm
    Shutdown: client sessions, lease pool, HTTP client closed in that order
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from snipshare import __version__
from snipshare.config import settings
from snipshare.dependencies import AppServices
from snipshare.exceptions import (
    AuthenticationError,
    BackendError,
    FormFlowError,
    LeaseTimeoutError,
    NotFoundError,
    PermissionDeniedError,
    SnipShareError,
    ValidationError,
)
from snipshare.middleware.logging import RequestLoggingMiddleware
from snipshare.middleware.request_id import RequestIDMiddleware, request_id_var
from snipshare.routes import auth, feed, health, profile

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, before anything else logs.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Per-request noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("SnipShare starting up...")

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks report the backend as disconnected
        logger.error("Configuration error: %s", str(e))

    services: AppServices = app.state.services
    services.pool.prewarm()
    logger.info("Backend: %s", services.backend.url)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("SnipShare shutting down...")
    await services.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, message: str, details=None, headers=None):
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP responses.

    Handler hierarchy:
        ValidationError         → 400
        AuthenticationError     → 401 (details.redirect_to = sign-in page)
        PermissionDeniedError   → 403
        NotFoundError           → 404
        LeaseTimeoutError       → 503 with Retry-After
        BackendError            → status by kind
        FormFlowError           → status by kind
        SnipShareError (base)   → 500
        Exception (fallback)    → 500, generic message, stack trace logged

    Context dicts are logged; only validation details reach the client.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        details = {"field": exc.field} if exc.field else None
        return _error_response(400, "validation_error", exc.message, details)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return _error_response(
            401,
            "authentication_required",
            exc.message,
            {"redirect_to": settings.signin_path},
        )

    @app.exception_handler(PermissionDeniedError)
    async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
        logger.warning("[%s] Permission denied: %s", request_id_var.get(""), exc.message)
        return _error_response(403, "permission_denied", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(LeaseTimeoutError)
    async def handle_lease_timeout(request: Request, exc: LeaseTimeoutError):
        logger.error("[%s] Lease pool exhausted: %s", request_id_var.get(""), exc.context)
        return _error_response(503, "service_busy", exc.message, headers={"Retry-After": "1"})

    @app.exception_handler(BackendError)
    async def handle_backend_error(request: Request, exc: BackendError):
        logger.error("[%s] Backend error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(exc.kind.status_code, exc.kind.value, exc.message)

    @app.exception_handler(FormFlowError)
    async def handle_form_flow_error(request: Request, exc: FormFlowError):
        logger.warning("[%s] Form flow error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(exc.kind.status_code, exc.kind.value, exc.message)

    @app.exception_handler(SnipShareError)
    async def handle_app_error(request: Request, exc: SnipShareError):
        logger.error("[%s] Application error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """
    Assemble the application.

    Args:
        services: prebuilt service container; tests pass one wired to a
            MockTransport. Defaults to one built from settings.
    """
    app = FastAPI(
        title="SnipShare API",
        description=(
            "Share, search and vote on code snippets. Auth and storage are "
            "provided by an external backend-as-a-service."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services or AppServices()

    # Executes in reverse order of addition: RequestID → Logging → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(profile.router)
    app.include_router(feed.router)
    app.include_router(health.router)

    return app


app = create_app()
