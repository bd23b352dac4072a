"""Tests for provider adapters (webhook payload → canonical update command)."""

import pytest

from payhook_api.billing.errors import MalformedPayload, UnsupportedProvider
from payhook_api.billing.providers import (
    AsaasAdapter,
    OpenPixAdapter,
    Unhandled,
    UpdateCommand,
    get_adapter,
    normalize,
    normalize_timestamp,
    resolve_provider,
    validate_webhook_payload,
)
from payhook_api.billing.types import PaymentStatus, Provider

OPENPIX_PAID = {
    "correlationID": "pay-1",
    "charge": {"id": "ch-1", "paidAt": "2024-01-15T10:30:00Z", "value": 9990},
}

ASAAS_PAID = {
    "id": "pay_asaas_1",
    "externalReference": "pay-1",
    "paymentDate": "2024-01-15",
    "billingType": "BOLETO",
}


# ============================================================================
# Payload helpers
# ============================================================================


def test_validate_webhook_payload_dotted_paths() -> None:
    assert validate_webhook_payload(OPENPIX_PAID, ["correlationID", "charge.id", "charge.paidAt"]) is True
    assert validate_webhook_payload(OPENPIX_PAID, ["charge.missing"]) is False
    assert validate_webhook_payload({"charge": "ch-1"}, ["charge.id"]) is False


def test_validate_webhook_payload_null_counts_as_missing() -> None:
    assert validate_webhook_payload({"correlationID": None}, ["correlationID"]) is False


def test_validate_webhook_payload_rejects_non_object() -> None:
    assert validate_webhook_payload(None, ["id"]) is False
    assert validate_webhook_payload(["id"], ["id"]) is False


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2024-01-15T10:30:00Z", "2024-01-15T10:30:00.000Z"),
        ("2024-01-15T10:30:00.123Z", "2024-01-15T10:30:00.123Z"),
        ("2024-01-15T10:30:00.5Z", "2024-01-15T10:30:00.500Z"),
        ("2024-01-15T10:30:00.1234567Z", "2024-01-15T10:30:00.123Z"),
        ("2024-01-15T07:30:00.25-03:00", "2024-01-15T10:30:00.250Z"),
        ("2024-01-15T07:30:00-03:00", "2024-01-15T10:30:00.000Z"),
        ("2024-01-15T10:30:00", "2024-01-15T10:30:00.000Z"),
        ("2024-01-15", "2024-01-15T00:00:00.000Z"),
    ],
)
def test_normalize_timestamp(value: str, expected: str) -> None:
    assert normalize_timestamp(value) == expected


@pytest.mark.parametrize("value", ["", "   ", "yesterday", "2024-13-45", None, 1705314600])
def test_normalize_timestamp_rejects_garbage(value) -> None:
    with pytest.raises(MalformedPayload):
        normalize_timestamp(value)


# ============================================================================
# Provider resolution
# ============================================================================


def test_resolve_provider() -> None:
    assert resolve_provider("openpix") is Provider.OPENPIX
    assert resolve_provider("asaas") is Provider.ASAAS


@pytest.mark.parametrize("value", ["stripe", "OpenPix", "", None])
def test_resolve_provider_rejects_unknown(value) -> None:
    with pytest.raises(UnsupportedProvider):
        resolve_provider(value)


def test_get_adapter_by_provider() -> None:
    assert isinstance(get_adapter(Provider.OPENPIX), OpenPixAdapter)
    assert isinstance(get_adapter("asaas"), AsaasAdapter)


# ============================================================================
# OpenPix
# ============================================================================


def test_openpix_charge_completed() -> None:
    command = normalize(Provider.OPENPIX, "OPENPIX:CHARGE_COMPLETED", OPENPIX_PAID)

    assert command == UpdateCommand(
        provider=Provider.OPENPIX,
        event="OPENPIX:CHARGE_COMPLETED",
        external_reference="pay-1",
        status=PaymentStatus.PAID,
        provider_payment_id="ch-1",
        paid_at="2024-01-15T10:30:00.000Z",
        raw_payload=OPENPIX_PAID,
    )


def test_openpix_event_namespace_is_optional() -> None:
    prefixed = normalize(Provider.OPENPIX, "OPENPIX:CHARGE_COMPLETED", OPENPIX_PAID)
    bare = normalize(Provider.OPENPIX, "CHARGE_COMPLETED", OPENPIX_PAID)
    lowered = normalize(Provider.OPENPIX, "openpix:CHARGE_COMPLETED", OPENPIX_PAID)

    assert bare.status == prefixed.status == lowered.status == PaymentStatus.PAID


def test_openpix_charge_expired_needs_no_paid_at() -> None:
    command = normalize(
        Provider.OPENPIX, "OPENPIX:CHARGE_EXPIRED", {"correlationID": "pay-1", "charge": {"id": "ch-1"}}
    )

    assert command.status is PaymentStatus.FAILED
    assert command.paid_at is None


@pytest.mark.parametrize(
    "data",
    [
        {"charge": {"id": "ch-1", "paidAt": "2024-01-15T10:30:00Z"}},
        {"correlationID": "pay-1", "charge": {"paidAt": "2024-01-15T10:30:00Z"}},
        {"correlationID": "pay-1", "charge": {"id": "ch-1"}},
        {"correlationID": "", "charge": {"id": "ch-1", "paidAt": "2024-01-15T10:30:00Z"}},
    ],
)
def test_openpix_completed_missing_fields(data) -> None:
    with pytest.raises(MalformedPayload):
        normalize(Provider.OPENPIX, "OPENPIX:CHARGE_COMPLETED", data)


def test_openpix_unknown_event_is_unhandled() -> None:
    result = normalize(Provider.OPENPIX, "OPENPIX:CHARGE_CREATED", {})

    assert result == Unhandled(provider=Provider.OPENPIX, event="OPENPIX:CHARGE_CREATED")
    assert result.to_response() == {
        "processed": False,
        "message": "Event received but not processed",
        "provider": "openpix",
        "event": "OPENPIX:CHARGE_CREATED",
    }


# ============================================================================
# Asaas
# ============================================================================


def test_asaas_payment_received() -> None:
    command = normalize(Provider.ASAAS, "PAYMENT_RECEIVED", ASAAS_PAID)

    assert command.external_reference == "pay-1"
    assert command.provider_payment_id == "pay_asaas_1"
    assert command.status is PaymentStatus.PAID
    assert command.paid_at == "2024-01-15T00:00:00.000Z"
    assert command.raw_payload is ASAAS_PAID


@pytest.mark.parametrize("event", ["PAYMENT_OVERDUE", "PAYMENT_DELETED"])
def test_asaas_failure_events(event: str) -> None:
    command = normalize(Provider.ASAAS, event, {"id": "pay_asaas_1", "externalReference": "pay-1"})

    assert command.status is PaymentStatus.FAILED
    assert command.paid_at is None


def test_asaas_received_without_payment_date_is_malformed() -> None:
    with pytest.raises(MalformedPayload) as exc_info:
        normalize(Provider.ASAAS, "PAYMENT_RECEIVED", {"id": "pay_asaas_1", "externalReference": "pay-1"})

    assert "paymentDate" in str(exc_info.value)


def test_asaas_events_are_not_namespaced() -> None:
    assert isinstance(normalize(Provider.ASAAS, "ASAAS:PAYMENT_RECEIVED", ASAAS_PAID), Unhandled)


def test_asaas_numeric_reference_is_stringified() -> None:
    command = normalize(Provider.ASAAS, "PAYMENT_OVERDUE", {"id": 42, "externalReference": 1001})

    assert command.external_reference == "1001"
    assert command.provider_payment_id == "42"


# ============================================================================
# Cross-provider equivalence
# ============================================================================


def test_equivalent_events_produce_same_canonical_update() -> None:
    openpix = normalize(
        Provider.OPENPIX,
        "OPENPIX:CHARGE_COMPLETED",
        {"correlationID": "pay-1", "charge": {"id": "x", "paidAt": "2024-01-15T10:30:00Z"}},
    )
    asaas = normalize(
        Provider.ASAAS,
        "PAYMENT_RECEIVED",
        {"id": "x", "externalReference": "pay-1", "paymentDate": "2024-01-15T10:30:00Z"},
    )

    assert (openpix.external_reference, openpix.status, openpix.provider_payment_id, openpix.paid_at) == (
        asaas.external_reference,
        asaas.status,
        asaas.provider_payment_id,
        asaas.paid_at,
    )
