"""Payment domain vocabulary shared by the normalizer and the store gateways."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Provider(str, Enum):
    """External payment processors that deliver webhooks."""

    OPENPIX = "openpix"
    ASAAS = "asaas"


class PaymentStatus(str, Enum):
    """Canonical payment status."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    BOLETO = "boleto"


# Permitted status transitions; anything not listed is rejected by the gateways.
ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELLED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PAID, PaymentStatus.CANCELLED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED, PaymentStatus.CANCELLED}),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}


def is_transition_allowed(current: PaymentStatus | str, target: PaymentStatus | str) -> bool:
    """Return True if ``current -> target`` is a permitted transition."""
    try:
        current = PaymentStatus(current)
        target = PaymentStatus(target)
    except ValueError:
        return False
    return target in ALLOWED_TRANSITIONS[current]


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of a status update on a payment row.

    outcome:
        "updated"   - the row was written
        "duplicate" - the payment already had the requested status (no write)
        "rejected"  - the transition is not permitted (no write)
    """

    payment: dict[str, Any]
    outcome: str
    previous_status: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome == "updated"

    @property
    def status(self) -> Optional[str]:
        return self.payment.get("status")


@dataclass(frozen=True)
class PaymentSummary:
    """Aggregated payment figures for one company over a period."""

    period_start: str
    period_end: str
    total_amount: float = 0
    total_count: int = 0
    paid_amount: float = 0
    paid_count: int = 0
    pending_amount: float = 0
    pending_count: int = 0
    failed_count: int = 0
