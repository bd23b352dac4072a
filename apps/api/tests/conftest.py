"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
# Inject sys.path for reliable pytest imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api

import json
import logging
import uuid
from datetime import datetime, timezone
from io import StringIO
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from payhook_api.billing.payment_store import PaymentStore, SupabasePaymentStore
from payhook_api.billing.signature import SIGNATURE_PREFIX, generate_webhook_signature
from payhook_api.billing.sql_store import SqlPaymentStore
from payhook_api.billing.types import Provider, utc_now_iso
from payhook_api.config.env import WebhookSettings
from payhook_api.db.models import Base, Company, Payment
from payhook_api.db.session import build_engine, build_sessionmaker
from payhook_api.main import create_app
from payhook_api.utils.logging import JSONFormatter

OPENPIX_SECRET = "openpix-test-secret"
ASAAS_SECRET = "asaas-test-secret"
WEBHOOK_PATH = "/payment-webhook"


# ============================================================================
# Fake Supabase (PostgREST) client
# ============================================================================


class _FakeResponse:
    def __init__(self, data: list[dict[str, Any]]):
        self.data = data


class _FakeQuery:
    """Subset of the postgrest-py request builder used by SupabasePaymentStore."""

    def __init__(self, client: "FakeSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._filters: list = []
        self._limit: Optional[int] = None

    def select(self, *_columns: str) -> "_FakeQuery":
        self._op = "select"
        return self

    def update(self, values: dict[str, Any]) -> "_FakeQuery":
        self._op = "update"
        self._payload = values
        return self

    def insert(self, row: dict[str, Any]) -> "_FakeQuery":
        self._op = "insert"
        self._payload = row
        return self

    def eq(self, column: str, value: Any) -> "_FakeQuery":
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def gte(self, column: str, value: Any) -> "_FakeQuery":
        self._filters.append(lambda row: row.get(column) is not None and row[column] >= value)
        return self

    def lte(self, column: str, value: Any) -> "_FakeQuery":
        self._filters.append(lambda row: row.get(column) is not None and row[column] <= value)
        return self

    def limit(self, count: int) -> "_FakeQuery":
        self._limit = count
        return self

    def execute(self) -> _FakeResponse:
        if (self._table, self._op) in self._client.failures:
            raise APIError(self._client.failures[(self._table, self._op)])

        rows = self._client.tables.setdefault(self._table, [])

        if self._op == "insert":
            now = utc_now_iso()
            row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now, **self._payload}
            rows.append(row)
            return _FakeResponse([dict(row)])

        matched = [row for row in rows if all(check(row) for check in self._filters)]
        if self._op == "update":
            for row in matched:
                row.update(self._payload)
            return _FakeResponse([dict(row) for row in matched])

        if self._limit is not None:
            matched = matched[: self._limit]
        return _FakeResponse([dict(row) for row in matched])


class FakeSupabaseClient:
    """In-memory stand-in for ``supabase.Client`` (table API only)."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {"payments": [], "companies": []}
        self.failures: dict[tuple[str, str], dict[str, str]] = {}

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def fail(self, table: str, op: str, message: str = "connection reset") -> None:
        """Make every ``op`` on ``table`` raise a PostgREST APIError."""
        self.failures[(table, op)] = {"message": message, "code": "PGRST000", "hint": "", "details": ""}


# ============================================================================
# Store fixtures
# ============================================================================


@pytest.fixture
def fake_supabase() -> FakeSupabaseClient:
    return FakeSupabaseClient()


@pytest.fixture
def supabase_store(fake_supabase: FakeSupabaseClient) -> SupabasePaymentStore:
    return SupabasePaymentStore(fake_supabase)


@pytest.fixture
def sql_store():
    """SQL store over a fresh in-memory SQLite database."""
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    try:
        yield SqlPaymentStore(build_sessionmaker(engine))
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(params=["supabase", "sql"])
def store(request) -> PaymentStore:
    """Run the test against both store backends."""
    return request.getfixturevalue(f"{request.param}_store")


def seed_company(store: PaymentStore, company_id: str = "comp-1", plan_id: Optional[str] = "plan-free") -> None:
    if isinstance(store, SupabasePaymentStore):
        store.client.tables["companies"].append(
            {"id": company_id, "name": "Acme", "plan_id": plan_id, "updated_at": utc_now_iso()}
        )
        return

    session = store.session_factory()
    try:
        session.add(Company(id=company_id, name="Acme", plan_id=plan_id))
        session.commit()
    finally:
        session.close()


def seed_payment(
    store: PaymentStore,
    payment_id: str = "pay-1",
    *,
    status: str = "pending",
    company_id: str = "comp-1",
    plan_id: str = "plan-pro",
    amount: float = 99.9,
    method: str = "pix",
    provider: str = "openpix",
    created_at: Optional[str] = None,
) -> None:
    """Insert a payment row with a fixed id (the provider external reference)."""
    created = created_at or utc_now_iso()
    if isinstance(store, SupabasePaymentStore):
        store.client.tables["payments"].append(
            {
                "id": payment_id,
                "company_id": company_id,
                "plan_id": plan_id,
                "amount": amount,
                "currency": "BRL",
                "status": status,
                "method": method,
                "provider": provider,
                "provider_payment_id": None,
                "description": "",
                "paid_at": None,
                "metadata": {},
                "provider_data": None,
                "created_at": created,
                "updated_at": created,
            }
        )
        return

    created_dt = datetime.fromisoformat(created.replace("Z", "+00:00"))
    session = store.session_factory()
    try:
        session.add(
            Payment(
                id=payment_id,
                company_id=company_id,
                plan_id=plan_id,
                amount=amount,
                currency="BRL",
                status=status,
                method=method,
                provider=provider,
                metadata_json={},
                created_at=created_dt,
                updated_at=created_dt,
            )
        )
        session.commit()
    finally:
        session.close()


def company_plan(store: PaymentStore, company_id: str = "comp-1") -> Optional[str]:
    if isinstance(store, SupabasePaymentStore):
        for row in store.client.tables["companies"]:
            if row["id"] == company_id:
                return row["plan_id"]
        return None

    session = store.session_factory()
    try:
        company = session.get(Company, company_id)
        return company.plan_id if company is not None else None
    finally:
        session.close()


# ============================================================================
# App fixtures
# ============================================================================


def make_settings(**overrides: Any) -> WebhookSettings:
    values: dict[str, Any] = {
        "store_backend": "supabase",
        "webhook_secrets": {Provider.OPENPIX: OPENPIX_SECRET, Provider.ASAAS: ASAAS_SECRET},
        "json_logs": False,
    }
    values.update(overrides)
    return WebhookSettings(**values)


@pytest.fixture
def settings() -> WebhookSettings:
    return make_settings()


@pytest.fixture
def app(settings: WebhookSettings, store: PaymentStore):
    return create_app(settings=settings, payment_store=store)


@pytest.fixture
def client(app) -> TestClient:
    """Create test client."""
    return TestClient(app)


# ============================================================================
# Webhook helpers
# ============================================================================


def signed_headers(raw_body: bytes, secret: str, *, header: str = "x-webhook-signature", prefixed: bool = True) -> dict:
    signature = generate_webhook_signature(raw_body, secret)
    if not prefixed:
        signature = signature[len(SIGNATURE_PREFIX):]
    return {"Content-Type": "application/json", header: signature}


def openpix_body(event: str = "OPENPIX:CHARGE_COMPLETED", **data_overrides: Any) -> bytes:
    data: dict[str, Any] = {
        "correlationID": "pay-1",
        "charge": {"id": "ch-1", "paidAt": "2024-01-15T10:30:00Z", "value": 9990},
    }
    data.update(data_overrides)
    return json.dumps({"provider": "openpix", "event": event, "data": data}).encode()


def asaas_body(event: str = "PAYMENT_RECEIVED", **data_overrides: Any) -> bytes:
    data: dict[str, Any] = {
        "id": "pay_asaas_1",
        "externalReference": "pay-1",
        "paymentDate": "2024-01-15",
        "value": 99.9,
        "billingType": "CREDIT_CARD",
    }
    data.update(data_overrides)
    return json.dumps({"provider": "asaas", "event": event, "data": data}).encode()


def post_openpix(client: TestClient, raw_body: bytes, secret: str = OPENPIX_SECRET):
    return client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body, secret))


def post_asaas(client: TestClient, raw_body: bytes, secret: str = ASAAS_SECRET):
    return client.post(
        WEBHOOK_PATH,
        content=raw_body,
        headers=signed_headers(raw_body, secret, header="asaas-signature", prefixed=False),
    )


# ============================================================================
# Log capture
# ============================================================================


def parse_json_logs(raw: str) -> list[dict]:
    logs = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            logs.append(json.loads(line))
        except json.JSONDecodeError:
            pass
    return logs


class LogCapture:
    """Capture JSON-formatted log output for a test block."""

    def __init__(self) -> None:
        self._root = logging.getLogger()
        self._saved: list[logging.Handler] = []
        self._saved_level = logging.WARNING
        self._stream: Optional[StringIO] = None
        self._handler: Optional[logging.StreamHandler] = None

    def __enter__(self) -> "LogCapture":
        self._saved = self._root.handlers[:]
        self._saved_level = self._root.level
        for h in self._saved:
            self._root.removeHandler(h)
        self._stream = StringIO()
        self._handler = logging.StreamHandler(self._stream)
        self._handler.setFormatter(JSONFormatter())
        self._root.addHandler(self._handler)
        self._root.setLevel(logging.INFO)
        return self

    def __exit__(self, *_) -> None:
        if self._handler:
            self._root.removeHandler(self._handler)
        if self._stream:
            self._stream.close()
        for h in self._saved:
            self._root.addHandler(h)
        self._root.setLevel(self._saved_level)

    def raw(self) -> str:
        assert self._stream is not None and not self._stream.closed, \
            "Call raw() inside the `with LogCapture()` block"
        return self._stream.getvalue()

    def logs(self) -> list[dict]:
        return parse_json_logs(self.raw())


@pytest.fixture
def log_capture() -> LogCapture:
    return LogCapture()


def utc(year: int, month: int, day: int) -> str:
    return datetime(year, month, day, tzinfo=timezone.utc).isoformat()
