"""Payment store gateway.

Applies canonical status updates to the single payment row whose id equals the
provider's external reference. Webhooks only ever look payments up; rows are
created beforehand by ``create_payment`` (payment initiation).

Update discipline (closes the out-of-order regression of a blind overwrite):
  1. read the row                      → PaymentNotFound if absent
  2. already at the requested status   → "duplicate", no write
  3. transition not permitted          → "rejected", no write
  4. guarded write  WHERE id = :id AND status = :prior
       no row matched → re-read: at requested status → "duplicate"
                                 otherwise          → PaymentConflictError
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from payhook_api.billing.errors import PaymentConflictError, PaymentNotFound, PaymentStoreError
from payhook_api.billing.types import (
    PaymentMethod,
    PaymentStatus,
    PaymentSummary,
    Provider,
    UpdateResult,
    is_transition_allowed,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

PAYMENTS_TABLE = "payments"
COMPANIES_TABLE = "companies"


def build_update_fields(
    target: PaymentStatus,
    *,
    provider_payment_id: Optional[str] = None,
    paid_at: Optional[str] = None,
    raw_payload: Any = None,
    extra: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Columns written for a transition into ``target``.

    ``paid_at`` is only written when entering ``paid`` (defaults to now).
    """
    now = utc_now_iso()
    fields: dict[str, Any] = {"status": target.value, "updated_at": now}
    if provider_payment_id is not None:
        fields["provider_payment_id"] = provider_payment_id
    if raw_payload is not None:
        fields["provider_data"] = raw_payload
    if target is PaymentStatus.PAID:
        fields["paid_at"] = paid_at or now
    if extra:
        fields.update(extra)
    return fields


def check_transition(payment: dict[str, Any], target: PaymentStatus) -> Optional[UpdateResult]:
    """Return a no-op result if no write is needed, else None."""
    current = payment.get("status")
    if current == target.value:
        logger.info(
            "PAYMENT_UPDATE_DUPLICATE",
            extra={"payment_id": payment.get("id"), "status": current},
        )
        return UpdateResult(payment=payment, outcome="duplicate", previous_status=current)

    if not is_transition_allowed(current, target):
        logger.warning(
            "PAYMENT_TRANSITION_REJECTED",
            extra={"payment_id": payment.get("id"), "from_status": current, "to_status": target.value},
        )
        return UpdateResult(payment=payment, outcome="rejected", previous_status=current)

    return None


class PaymentStore(ABC):
    """Persistence boundary for payments and the company plan cascade."""

    backend: str = "abstract"

    # ── primitives ───────────────────────────────────────────────────────────

    @abstractmethod
    def get_payment(self, payment_id: str) -> Optional[dict[str, Any]]:
        """Return the payment row or None."""

    @abstractmethod
    def create_payment(
        self,
        *,
        company_id: str,
        plan_id: str,
        amount: float,
        method: str,
        provider: str,
        currency: str = "BRL",
        description: str = "",
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Insert a new payment in ``pending`` status and return the row.

        Raises:
            ValueError: Unknown method or provider
        """

    @abstractmethod
    def set_company_plan(self, company_id: str, plan_id: str) -> bool:
        """Point the company at ``plan_id``.

        Returns:
            False if no company row matched ``company_id``
        """

    @abstractmethod
    def list_payments(
        self, company_id: str, period_start: str, period_end: str
    ) -> list[dict[str, Any]]:
        """Payments of a company created within [period_start, period_end]."""

    @abstractmethod
    def ping(self) -> None:
        """Raise PaymentStoreError if the store is unreachable."""

    @abstractmethod
    def _guarded_update(
        self, payment_id: str, prior_status: str, fields: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        """Write ``fields`` only if the row still has ``prior_status``."""

    # ── operations ───────────────────────────────────────────────────────────

    def transition(
        self,
        payment_id: str,
        target: PaymentStatus,
        fields: dict[str, Any],
    ) -> UpdateResult:
        """Move a payment to ``target`` following the transition table.

        Raises:
            PaymentNotFound: No payment with this id
            PaymentConflictError: Row changed between read and write
            PaymentStoreError: Persistence failure
        """
        payment = self.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)

        noop = check_transition(payment, target)
        if noop is not None:
            return noop

        prior = payment["status"]
        updated = self._guarded_update(payment_id, prior, fields)
        if updated is None:
            latest = self.get_payment(payment_id)
            if latest is not None and latest.get("status") == target.value:
                return UpdateResult(payment=latest, outcome="duplicate", previous_status=prior)
            raise PaymentConflictError(payment_id, prior, latest.get("status") if latest else None)

        logger.info(
            "PAYMENT_UPDATED",
            extra={"payment_id": payment_id, "from_status": prior, "to_status": target.value},
        )
        return UpdateResult(payment=updated, outcome="updated", previous_status=prior)

    def apply_update(
        self,
        external_reference: str,
        status: PaymentStatus,
        *,
        provider_payment_id: Optional[str] = None,
        paid_at: Optional[str] = None,
        raw_payload: Any = None,
    ) -> UpdateResult:
        """Apply a webhook-derived status update to the referenced payment."""
        status = PaymentStatus(status)
        fields = build_update_fields(
            status,
            provider_payment_id=provider_payment_id,
            paid_at=paid_at,
            raw_payload=raw_payload,
        )
        return self.transition(external_reference, status, fields)

    def cancel_payment(self, payment_id: str) -> UpdateResult:
        """Explicit cancel action (never triggered by a webhook)."""
        return self.transition(
            payment_id, PaymentStatus.CANCELLED, build_update_fields(PaymentStatus.CANCELLED)
        )

    def refund_payment(self, payment_id: str, amount: Optional[float] = None) -> UpdateResult:
        """Explicit refund action; ``amount`` is recorded in metadata."""
        extra = None
        if amount is not None:
            current = self.get_payment(payment_id)
            if current is None:
                raise PaymentNotFound(payment_id)
            extra = {"metadata": {**(current.get("metadata") or {}), "refund_amount": amount}}
        return self.transition(
            payment_id,
            PaymentStatus.REFUNDED,
            build_update_fields(PaymentStatus.REFUNDED, extra=extra),
        )

    def get_summary(self, company_id: str, period_start: str, period_end: str) -> PaymentSummary:
        """Aggregate a company's payments created within the period."""
        total_amount = paid_amount = pending_amount = 0
        total_count = paid_count = pending_count = failed_count = 0

        for payment in self.list_payments(company_id, period_start, period_end):
            amount = payment.get("amount") or 0
            total_amount += amount
            total_count += 1
            status = payment.get("status")
            if status == PaymentStatus.PAID.value:
                paid_amount += amount
                paid_count += 1
            elif status == PaymentStatus.PENDING.value:
                pending_amount += amount
                pending_count += 1
            elif status == PaymentStatus.FAILED.value:
                failed_count += 1

        return PaymentSummary(
            period_start=period_start,
            period_end=period_end,
            total_amount=total_amount,
            total_count=total_count,
            paid_amount=paid_amount,
            paid_count=paid_count,
            pending_amount=pending_amount,
            pending_count=pending_count,
            failed_count=failed_count,
        )


@contextmanager
def _postgrest_errors(operation: str) -> Iterator[None]:
    """Translate PostgREST / transport failures into PaymentStoreError."""
    try:
        yield
    except APIError as exc:
        logger.error(
            "PAYMENT_STORE_API_ERROR",
            extra={"operation": operation, "error_code": exc.code, "error_msg": exc.message},
        )
        raise PaymentStoreError(f"{operation} failed: {exc.message}") from exc
    except httpx.HTTPError as exc:
        logger.error(
            "PAYMENT_STORE_UNREACHABLE",
            extra={"operation": operation, "error_type": type(exc).__name__},
        )
        raise PaymentStoreError(f"{operation} failed: {type(exc).__name__}") from exc


class SupabasePaymentStore(PaymentStore):
    """Payment store backed by the Supabase PostgREST API.

    The prior status acts as an optimistic concurrency token on every write.
    """

    backend = "supabase"

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_env(cls) -> "SupabasePaymentStore":
        from payhook_api.supabase_client import get_supabase_admin_client

        return cls(get_supabase_admin_client())

    def get_payment(self, payment_id: str) -> Optional[dict[str, Any]]:
        with _postgrest_errors("get_payment"):
            response = (
                self.client.table(PAYMENTS_TABLE)
                .select("*")
                .eq("id", payment_id)
                .limit(1)
                .execute()
            )
        return response.data[0] if response.data else None

    def _guarded_update(
        self, payment_id: str, prior_status: str, fields: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        with _postgrest_errors("update_payment"):
            response = (
                self.client.table(PAYMENTS_TABLE)
                .update(fields)
                .eq("id", payment_id)
                .eq("status", prior_status)
                .execute()
            )
        return response.data[0] if response.data else None

    def create_payment(
        self,
        *,
        company_id: str,
        plan_id: str,
        amount: float,
        method: str,
        provider: str,
        currency: str = "BRL",
        description: str = "",
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        row = {
            "company_id": company_id,
            "plan_id": plan_id,
            "amount": amount,
            "currency": currency or "BRL",
            "method": PaymentMethod(method).value,
            "provider": Provider(provider).value,
            "status": PaymentStatus.PENDING.value,
            "description": description,
            "metadata": metadata or {},
        }
        with _postgrest_errors("create_payment"):
            response = self.client.table(PAYMENTS_TABLE).insert(row).execute()
        if not response.data:
            raise PaymentStoreError("create_payment returned no row")
        return response.data[0]

    def set_company_plan(self, company_id: str, plan_id: str) -> bool:
        with _postgrest_errors("set_company_plan"):
            response = self.client.table(COMPANIES_TABLE).update(
                {"plan_id": plan_id, "updated_at": utc_now_iso()}
            ).eq("id", company_id).execute()
        return bool(response.data)

    def list_payments(
        self, company_id: str, period_start: str, period_end: str
    ) -> list[dict[str, Any]]:
        with _postgrest_errors("list_payments"):
            response = (
                self.client.table(PAYMENTS_TABLE)
                .select("amount, status")
                .eq("company_id", company_id)
                .gte("created_at", period_start)
                .lte("created_at", period_end)
                .execute()
            )
        return response.data or []

    def ping(self) -> None:
        with _postgrest_errors("ping"):
            self.client.table(PAYMENTS_TABLE).select("id").limit(1).execute()
