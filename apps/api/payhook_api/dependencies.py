"""FastAPI dependencies and store construction.

The payment store is built once by the application factory (or injected by
tests) and shared through ``app.state``.
"""

import logging

from fastapi import Request

from payhook_api.billing.payment_store import PaymentStore, SupabasePaymentStore
from payhook_api.config.env import WebhookSettings

logger = logging.getLogger(__name__)


def build_payment_store(settings: WebhookSettings) -> PaymentStore:
    """Construct the configured store backend."""
    if settings.store_backend == "sql":
        from payhook_api.billing.sql_store import SqlPaymentStore

        store: PaymentStore = SqlPaymentStore.from_env()
    else:
        store = SupabasePaymentStore.from_env()

    logger.info("Payment store ready", extra={"backend": store.backend})
    return store


def get_payment_store(request: Request) -> PaymentStore:
    return request.app.state.payment_store


def get_settings(request: Request) -> WebhookSettings:
    return request.app.state.settings
