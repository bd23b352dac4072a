"""Provider adapters: map provider webhook envelopes to canonical update commands.

OpenPix (PIX):
  OPENPIX:CHARGE_COMPLETED → paid    ref=data.correlationID  id=data.charge.id  paid_at=data.charge.paidAt
  OPENPIX:CHARGE_EXPIRED   → failed  ref=data.correlationID  id=data.charge.id

Asaas (card / boleto):
  PAYMENT_RECEIVED         → paid    ref=data.externalReference  id=data.id  paid_at=data.paymentDate
  PAYMENT_OVERDUE          → failed
  PAYMENT_DELETED          → failed

Any other event is acknowledged but not processed (``Unhandled``) so the provider
stops redelivering it. Adapters are pure: they never touch the store.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from payhook_api.billing.errors import MalformedPayload, UnsupportedProvider
from payhook_api.billing.types import PaymentStatus, Provider, format_timestamp

logger = logging.getLogger(__name__)

UNHANDLED_MESSAGE = "Event received but not processed"

# fromisoformat on 3.10 only takes 3 or 6 fraction digits
_FRACTION = re.compile(r"(?<=\d\d:\d\d:\d\d)\.(\d+)")


@dataclass(frozen=True)
class UpdateCommand:
    """Canonical status update derived from one webhook delivery."""

    provider: Provider
    event: str
    external_reference: str
    status: PaymentStatus
    provider_payment_id: Optional[str]
    paid_at: Optional[str]
    raw_payload: Any


@dataclass(frozen=True)
class Unhandled:
    """A recognized provider sent an event this service ignores."""

    provider: Provider
    event: str

    def to_response(self) -> dict[str, Any]:
        return {
            "processed": False,
            "message": UNHANDLED_MESSAGE,
            "provider": self.provider.value,
            "event": self.event,
        }


NormalizeResult = Union[UpdateCommand, Unhandled]


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _lookup(payload: Any, path: str) -> Any:
    current = payload
    for key in path.split("."):
        if not isinstance(current, dict) or current.get(key) is None:
            return None
        current = current[key]
    return current


def validate_webhook_payload(payload: Any, required_fields: Iterable[str]) -> bool:
    """Return True if every dotted path in ``required_fields`` is present and non-null."""
    if not isinstance(payload, dict):
        return False
    return all(_lookup(payload, field) is not None for field in required_fields)


def missing_fields(payload: Any, required_fields: Iterable[str]) -> list[str]:
    return [field for field in required_fields if _lookup(payload, field) is None]


def _six_digit_fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def normalize_timestamp(value: Any) -> str:
    """Normalize a provider timestamp to ``YYYY-MM-DDTHH:MM:SS.mmmZ`` (UTC).

    Accepts ISO-8601 datetimes (``Z`` or explicit offset; naive values are UTC)
    and date-only values (``YYYY-MM-DD``, read as UTC midnight).

    Raises:
        MalformedPayload: If the value cannot be parsed
    """
    if not isinstance(value, str) or not value.strip():
        raise MalformedPayload(f"Invalid timestamp: {value!r}")

    text = value.strip()
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"

    try:
        if len(text) == 10:
            parsed = datetime.strptime(text, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        else:
            parsed = datetime.fromisoformat(_FRACTION.sub(_six_digit_fraction, text))
    except ValueError as exc:
        raise MalformedPayload(f"Invalid timestamp: {value!r}") from exc

    return format_timestamp(parsed)


def _as_reference(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str) or not value.strip():
        raise MalformedPayload("External reference must be a non-empty string")
    return value


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Maps one provider's event vocabulary to canonical update commands."""

    provider: Provider
    reference_field: str
    provider_id_field: str
    paid_at_field: str
    # canonical event name → canonical status
    events: dict[str, PaymentStatus]

    def canonical_event(self, event: str) -> str:
        return event

    @abstractmethod
    def describe(self) -> str:
        """Human-readable provider name (logs)."""

    def normalize(self, event: str, data: Any) -> NormalizeResult:
        """Convert one delivery into an ``UpdateCommand`` or ``Unhandled``.

        Raises:
            MalformedPayload: If a recognized event lacks required fields
        """
        status = self.events.get(self.canonical_event(event))
        if status is None:
            logger.info(
                "WEBHOOK_EVENT_UNHANDLED",
                extra={"provider": self.provider.value, "webhook_event": event},
            )
            return Unhandled(provider=self.provider, event=event)

        required = [self.reference_field, self.provider_id_field]
        if status is PaymentStatus.PAID:
            required.append(self.paid_at_field)

        if not validate_webhook_payload(data, required):
            raise MalformedPayload(
                f"{self.describe()} {event} missing required fields: "
                f"{', '.join(missing_fields(data, required))}"
            )

        paid_at = None
        if status is PaymentStatus.PAID:
            paid_at = normalize_timestamp(_lookup(data, self.paid_at_field))

        return UpdateCommand(
            provider=self.provider,
            event=event,
            external_reference=_as_reference(_lookup(data, self.reference_field)),
            status=status,
            provider_payment_id=str(_lookup(data, self.provider_id_field)),
            paid_at=paid_at,
            raw_payload=data,
        )


class OpenPixAdapter(ProviderAdapter):
    provider = Provider.OPENPIX
    reference_field = "correlationID"
    provider_id_field = "charge.id"
    paid_at_field = "charge.paidAt"
    events = {
        "CHARGE_COMPLETED": PaymentStatus.PAID,
        "CHARGE_EXPIRED": PaymentStatus.FAILED,
    }

    _NAMESPACE = "OPENPIX:"

    def canonical_event(self, event: str) -> str:
        # OpenPix namespaces its event names (OPENPIX:CHARGE_COMPLETED)
        if event.upper().startswith(self._NAMESPACE):
            return event[len(self._NAMESPACE):]
        return event

    def describe(self) -> str:
        return "OpenPix"


class AsaasAdapter(ProviderAdapter):
    provider = Provider.ASAAS
    reference_field = "externalReference"
    provider_id_field = "id"
    paid_at_field = "paymentDate"
    events = {
        "PAYMENT_RECEIVED": PaymentStatus.PAID,
        "PAYMENT_OVERDUE": PaymentStatus.FAILED,
        "PAYMENT_DELETED": PaymentStatus.FAILED,
    }

    def describe(self) -> str:
        return "Asaas"


_ADAPTERS: dict[Provider, ProviderAdapter] = {
    Provider.OPENPIX: OpenPixAdapter(),
    Provider.ASAAS: AsaasAdapter(),
}


def resolve_provider(value: Any) -> Provider:
    """Parse the envelope's ``provider`` field.

    Raises:
        UnsupportedProvider: If the value names no known provider
    """
    try:
        return Provider(value)
    except ValueError:
        raise UnsupportedProvider(f"Unsupported payment provider: {value!r}") from None


def get_adapter(provider: Union[Provider, str]) -> ProviderAdapter:
    return _ADAPTERS[resolve_provider(provider)]


def normalize(provider: Union[Provider, str], event: str, data: Any) -> NormalizeResult:
    """Normalize one delivery for ``provider``.

    Raises:
        UnsupportedProvider: Unknown provider
        MalformedPayload: Recognized event with missing/invalid fields
    """
    return get_adapter(provider).normalize(event, data)
