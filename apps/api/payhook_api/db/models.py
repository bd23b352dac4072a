"""SQLAlchemy ORM models for the payment reconciliation tables.

Mirrors the Supabase ``payments`` / ``companies`` tables (relevant columns only)
for the direct-Postgres store backend.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, NUMERIC, TEXT, TIMESTAMP, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from payhook_api.billing.types import format_timestamp


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value is not None else None


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Company(Base):
    """Tenant company; ``plan_id`` is its active plan."""

    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    plan_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )


class Payment(Base):
    """Payment owned by a company; ``id`` doubles as the provider external reference."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id: Mapped[str] = mapped_column(TEXT, nullable=False)  # FK to companies
    plan_id: Mapped[str] = mapped_column(TEXT, nullable=False)  # FK to plans

    amount: Mapped[float] = mapped_column(NUMERIC(12, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(TEXT, nullable=False, default="BRL")

    # pending/paid/failed/cancelled/refunded
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default="pending")
    method: Mapped[str] = mapped_column(TEXT, nullable=False)  # pix/credit_card/boleto
    provider: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)  # openpix/asaas
    provider_payment_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    provider_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_payments_company_created", "company_id", "created_at"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Row in the same shape the PostgREST API returns."""
        return {
            "id": self.id,
            "company_id": self.company_id,
            "plan_id": self.plan_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "method": self.method,
            "provider": self.provider,
            "provider_payment_id": self.provider_payment_id,
            "description": self.description,
            "paid_at": _iso(self.paid_at),
            "metadata": self.metadata_json or {},
            "provider_data": self.provider_data,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
