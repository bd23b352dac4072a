"""Payment webhook ingestion and reconciliation."""

from payhook_api.billing.errors import (
    MalformedPayload,
    PaymentConflictError,
    PaymentNotFound,
    PaymentStoreError,
    SignatureInvalid,
    UnsupportedProvider,
    WebhookError,
)
from payhook_api.billing.types import PaymentMethod, PaymentStatus, Provider, UpdateResult

__all__ = [
    "MalformedPayload",
    "PaymentConflictError",
    "PaymentMethod",
    "PaymentNotFound",
    "PaymentStatus",
    "PaymentStoreError",
    "Provider",
    "SignatureInvalid",
    "UnsupportedProvider",
    "UpdateResult",
    "WebhookError",
]
