"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends, Response, status
from fastapi.concurrency import run_in_threadpool

from payhook_api import __version__
from payhook_api.billing.payment_store import PaymentStore
from payhook_api.config.env import WebhookSettings
from payhook_api.dependencies import get_payment_store, get_settings
from payhook_api.schemas import HealthResponse

router = APIRouter()
logger = logging.getLogger(__name__)


def check_store(store: PaymentStore) -> str:
    """Check payment store connectivity.

    Returns:
        str: "up" if healthy, error message otherwise
    """
    try:
        store.ping()
        return "up"
    except Exception as e:
        logger.error(f"Payment store health check failed: {e}")
        return f"down: {str(e)[:50]}"


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: PaymentStore = Depends(get_payment_store),
    settings: WebhookSettings = Depends(get_settings),
) -> HealthResponse:
    """
    Health check endpoint.

    Always returns 200 OK (use /readyz for dependency checks).
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        services={
            "api": "up",
            store.backend: await run_in_threadpool(check_store, store),
        },
        providers=settings.configured_providers,
    )


@router.get("/readyz", response_model=HealthResponse)
async def readiness_check(
    response: Response,
    store: PaymentStore = Depends(get_payment_store),
    settings: WebhookSettings = Depends(get_settings),
) -> HealthResponse:
    """
    Readiness check endpoint.

    Returns 503 if the payment store is down.
    """
    services = {
        "api": "up",
        store.backend: await run_in_threadpool(check_store, store),
    }

    any_down = any("down" in svc_status for svc_status in services.values())
    if any_down:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="not_ready" if any_down else "ready",
        version=__version__,
        services=services,
        providers=settings.configured_providers,
    )
