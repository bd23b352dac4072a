"""Payhook API - FastAPI Application Entry Point."""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from payhook_api import __version__
from payhook_api.billing.payment_store import PaymentStore
from payhook_api.config.env import WebhookSettings, load_settings, validate_settings
from payhook_api.context import payment_id_var, provider_var, request_id_var
from payhook_api.dependencies import build_payment_store
from payhook_api.routers import health, webhooks
from payhook_api.utils import configure_json_logging

logger = logging.getLogger(__name__)

# Browser callers (Supabase JS client) need these on every response, errors included.
CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, x-webhook-signature, asaas-signature"
    ),
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS, PUT, DELETE",
}


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        404: "Not Found",
        405: "Method Not Allowed",
        500: "Internal Server Error",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


def create_app(
    *,
    settings: Optional[WebhookSettings] = None,
    payment_store: Optional[PaymentStore] = None,
) -> FastAPI:
    """Build the webhook application.

    Settings and store may be injected (tests). Whatever is not injected is
    resolved from the environment at startup, failing fast on missing
    configuration.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "settings", None) is None:
            resolved = load_settings()
            validate_settings(resolved)
            app.state.settings = resolved
        if getattr(app.state, "payment_store", None) is None:
            app.state.payment_store = build_payment_store(app.state.settings)
        logger.info(
            "Payhook API started",
            extra={
                "backend": app.state.payment_store.backend,
                "providers": app.state.settings.configured_providers,
            },
        )
        yield

    app = FastAPI(
        title="Payhook API",
        description="Payment webhook ingestion and reconciliation for OpenPix and Asaas.",
        version=__version__,
        lifespan=lifespan,
    )

    if settings is not None:
        validate_settings(settings, require_store=payment_store is None)
    app.state.settings = settings
    app.state.payment_store = payment_store

    # Set PAYHOOK_JSON_LOGS=false to disable (defaults to true for production)
    logging_settings = settings if settings is not None else load_settings()
    if logging_settings.json_logs:
        configure_json_logging(log_level=logging_settings.log_level)
        logger.info("Structured JSON logging enabled")

    # ========================================================================
    # CORS headers on every response (webhook is also called from browsers)
    # ========================================================================

    @app.middleware("http")
    async def cors_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers[name] = value
        return response

    # ========================================================================
    # HTTP Request Completion Logging Middleware
    # ========================================================================

    @app.middleware("http")
    async def http_completion_logging_middleware(request: Request, call_next):
        """Log every HTTP request completion with observability fields.

        - Every HTTP request emits "http.request.completed"
        - Fields: method, path, status_code, duration_ms (+ context vars)
        - Logs even on exceptions (status_code=500)
        - Clears per-request contextvars at start and end
        """
        provider_var.set("")
        payment_id_var.set("")

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            extra = {
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            }
            cascade_warning = getattr(request.state, "cascade_warning", None)
            if cascade_warning:
                extra["cascade_warning"] = cascade_warning
            logger.info("http.request.completed", extra=extra)

            provider_var.set("")
            payment_id_var.set("")

    # ========================================================================
    # Request ID Middleware (MUST BE OUTERMOST)
    # ========================================================================

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Generate and propagate request_id for observability.

        - Accepts X-Request-ID header from client (optional)
        - Generates new UUID if not provided
        - Returns X-Request-ID in response headers

        Registered last so it wraps every other middleware.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        return response

    # ========================================================================
    # Global Exception Handlers
    # ========================================================================

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle HTTP exceptions (404, 405, ...) with the webhook error body."""
        message = exc.detail if isinstance(exc.detail, str) else _get_title_for_status(exc.status_code)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": message, "error_code": f"HTTP_{exc.status_code}"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions with a generic 500 body."""
        logger.error(f"Unhandled exception: {type(exc).__name__}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "error_code": "INTERNAL_ERROR"},
            headers={**CORS_HEADERS, "Retry-After": "60"},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(webhooks.router)

    return app


app = create_app()
