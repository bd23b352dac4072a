"""Webhook error taxonomy.

Each error carries the HTTP status and error code the webhook handler answers
with. Client-side problems (bad payload, bad signature) are 4xx and must not be
retried; server-side problems are 5xx so the provider retries the delivery.

Unrecognized events and plan-activation failures are deliberately NOT errors:
see ``providers.Unhandled`` and ``plan_activation.CascadeResult``.
"""

from typing import Optional


class WebhookError(Exception):
    """Base class for webhook processing errors."""

    status_code: int = 500
    error_code: str = "WEBHOOK_INTERNAL_ERROR"
    public_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)


class SignatureInvalid(WebhookError):
    status_code = 401
    error_code = "WEBHOOK_SIGNATURE_INVALID"
    public_message = "Invalid webhook signature"


class MalformedPayload(WebhookError):
    status_code = 400
    error_code = "WEBHOOK_INVALID_PAYLOAD"
    public_message = "Invalid webhook payload"


class UnsupportedProvider(WebhookError):
    status_code = 400
    error_code = "WEBHOOK_UNSUPPORTED_PROVIDER"
    public_message = "Unsupported payment provider"


class PaymentNotFound(WebhookError):
    """No payment matches the external reference.

    Answered with 500 so the provider retries: the delivery may have raced the
    commit of the payment row.
    """

    status_code = 500
    error_code = "WEBHOOK_PAYMENT_NOT_FOUND"
    public_message = "Payment not found"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class PaymentStoreError(WebhookError):
    """Underlying persistence failure."""

    status_code = 500
    error_code = "WEBHOOK_STORE_FAILURE"
    public_message = "Payment store unavailable"


class PaymentConflictError(PaymentStoreError):
    """The row changed between read and guarded write."""

    error_code = "WEBHOOK_STORE_CONFLICT"
    public_message = "Concurrent payment update"

    def __init__(self, payment_id: str, expected_status: str, actual_status: Optional[str]):
        self.payment_id = payment_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Payment {payment_id} changed concurrently: expected status "
            f"{expected_status!r}, found {actual_status!r}"
        )
