"""Plan activation cascade.

When a payment lands on ``paid`` the owning company is moved to the payment's
plan. A failure here is reported as a non-fatal ``CascadeResult`` and logged:
the payment update already succeeded, so surfacing it to the provider would
only trigger a redelivery of a status change that is already applied. Drift is
reconciled out of band (or healed by the next redelivery, which re-runs the
cascade for an already-paid payment).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from payhook_api.billing.payment_store import PaymentStore
from payhook_api.billing.types import PaymentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeResult:
    """Outcome of a plan activation attempt."""

    ok: bool
    company_id: Optional[str] = None
    plan_id: Optional[str] = None
    warning: Optional[str] = None


def should_activate_plan(command_status: str, payment: dict[str, Any]) -> bool:
    """Cascade fires only for a paid event whose payment is paid afterwards."""
    return (
        command_status == PaymentStatus.PAID.value
        and payment.get("status") == PaymentStatus.PAID.value
    )


def activate_company_plan(
    store: PaymentStore,
    payment: dict[str, Any],
    *,
    log: Optional[logging.Logger] = None,
) -> CascadeResult:
    """Point the payment's company at the payment's plan. Never raises."""
    log = log or logger
    company_id = payment.get("company_id")
    plan_id = payment.get("plan_id")

    if not company_id or not plan_id:
        warning = "payment has no company_id/plan_id"
        log.warning(
            "PLAN_ACTIVATION_SKIPPED",
            extra={"payment_id": payment.get("id"), "reason": warning},
        )
        return CascadeResult(ok=False, company_id=company_id, plan_id=plan_id, warning=warning)

    try:
        updated = store.set_company_plan(company_id, plan_id)
    except Exception as exc:
        log.error(
            "PLAN_ACTIVATION_FAILED",
            extra={
                "payment_id": payment.get("id"),
                "company_id": company_id,
                "plan_id": plan_id,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        return CascadeResult(
            ok=False,
            company_id=company_id,
            plan_id=plan_id,
            warning=f"{type(exc).__name__}: {exc}",
        )

    if not updated:
        warning = f"company {company_id} not found"
        log.error(
            "PLAN_ACTIVATION_FAILED",
            extra={
                "payment_id": payment.get("id"),
                "company_id": company_id,
                "plan_id": plan_id,
                "reason": "company_not_found",
            },
        )
        return CascadeResult(ok=False, company_id=company_id, plan_id=plan_id, warning=warning)

    log.info(
        "PLAN_ACTIVATED",
        extra={"payment_id": payment.get("id"), "company_id": company_id, "plan_id": plan_id},
    )
    return CascadeResult(ok=True, company_id=company_id, plan_id=plan_id)
