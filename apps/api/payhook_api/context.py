"""Request context management for observability.

Context variables for request tracking across async boundaries.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Provider - payment provider of the webhook being processed
provider_var: ContextVar[str] = ContextVar("provider", default="")

# Payment ID - external reference of the payment being reconciled
payment_id_var: ContextVar[str] = ContextVar("payment_id", default="")
