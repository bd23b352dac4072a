"""Payment store backed by SQLAlchemy (direct Postgres access).

Same guarded-write semantics as the Supabase store: every status change is an
``UPDATE ... WHERE id = :id AND status = :prior``, so concurrent deliveries for
one payment serialize on the row and the loser observes rowcount 0.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from sqlalchemy import select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from payhook_api.billing.errors import PaymentStoreError
from payhook_api.billing.payment_store import PaymentStore
from payhook_api.billing.types import PaymentMethod, PaymentStatus, Provider
from payhook_api.db.models import Company, Payment

logger = logging.getLogger(__name__)

_TIMESTAMP_FIELDS = frozenset({"paid_at", "updated_at", "created_at"})
_COLUMN_NAMES = {"metadata": "metadata_json"}


def _parse_timestamp(value: Any) -> Any:
    if isinstance(value, str):
        text_value = value[:-1] + "+00:00" if value.endswith("Z") else value
        return datetime.fromisoformat(text_value)
    return value


def _to_columns(fields: dict[str, Any]) -> dict[str, Any]:
    """Map PostgREST-style field names/values onto ORM attributes."""
    values = {}
    for key, value in fields.items():
        if key in _TIMESTAMP_FIELDS:
            value = _parse_timestamp(value)
        values[_COLUMN_NAMES.get(key, key)] = value
    return values


class SqlPaymentStore(PaymentStore):
    """Payment store over a SQLAlchemy session factory."""

    backend = "sql"

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    @classmethod
    def from_env(cls) -> "SqlPaymentStore":
        from payhook_api.db.session import get_sessionmaker

        return cls(get_sessionmaker())

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "PAYMENT_STORE_DB_ERROR",
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
            raise PaymentStoreError(f"{operation} failed: {type(exc).__name__}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_payment(self, payment_id: str) -> Optional[dict[str, Any]]:
        with self._session("get_payment") as session:
            payment = session.get(Payment, payment_id)
            return payment.to_dict() if payment is not None else None

    def _guarded_update(
        self, payment_id: str, prior_status: str, fields: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        with self._session("update_payment") as session:
            result = session.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status == prior_status)
                .values(**_to_columns(fields))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            payment = session.execute(
                select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
            ).scalar_one()
            return payment.to_dict()

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
        with self._session("create_payment") as session:
            payment = Payment(
                company_id=company_id,
                plan_id=plan_id,
                amount=amount,
                currency=currency or "BRL",
                method=PaymentMethod(method).value,
                provider=Provider(provider).value,
                status=PaymentStatus.PENDING.value,
                description=description,
                metadata_json=metadata or {},
            )
            session.add(payment)
            session.flush()
            return payment.to_dict()

    def set_company_plan(self, company_id: str, plan_id: str) -> bool:
        with self._session("set_company_plan") as session:
            result = session.execute(
                update(Company)
                .where(Company.id == company_id)
                .values(plan_id=plan_id, updated_at=datetime.now(timezone.utc))
            )
        return result.rowcount > 0

    def list_payments(
        self, company_id: str, period_start: str, period_end: str
    ) -> list[dict[str, Any]]:
        with self._session("list_payments") as session:
            rows = session.execute(
                select(Payment).where(
                    Payment.company_id == company_id,
                    Payment.created_at >= _parse_timestamp(period_start),
                    Payment.created_at <= _parse_timestamp(period_end),
                )
            ).scalars()
            return [row.to_dict() for row in rows]

    def ping(self) -> None:
        with self._session("ping") as session:
            session.execute(text("SELECT 1"))
