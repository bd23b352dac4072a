#!/usr/bin/env python3
"""
Signed test webhook sender.

Builds an OpenPix or Asaas delivery for a payment, signs the exact body with
the provider secret and POSTs it to a running payment-webhook endpoint.

Usage:
    python scripts/send_test_webhook.py openpix <payment_id>
    python scripts/send_test_webhook.py asaas <payment_id> --event PAYMENT_OVERDUE
    python scripts/send_test_webhook.py openpix <payment_id> --url https://<ref>.supabase.co/functions/v1/payment-webhook

Exit Codes:
    0: 2xx response
    1: non-2xx response or transport error

Environment Variables:
    OPENPIX_WEBHOOK_SECRET / ASAAS_WEBHOOK_SECRET: signing secret (or --secret)
"""

import argparse
import json
import os
import sys
import uuid

import httpx

from payhook_api.billing.signature import SIGNATURE_PREFIX, generate_webhook_signature
from payhook_api.billing.types import utc_now_iso

DEFAULT_URL = "http://localhost:8000/payment-webhook"

DEFAULT_EVENTS = {
    "openpix": "OPENPIX:CHARGE_COMPLETED",
    "asaas": "PAYMENT_RECEIVED",
}


def build_envelope(provider: str, event: str, payment_id: str) -> dict:
    """Minimal provider payload carrying every field the adapters read."""
    if provider == "openpix":
        data = {
            "correlationID": payment_id,
            "charge": {
                "id": f"ch_{uuid.uuid4().hex[:12]}",
                "paidAt": utc_now_iso(),
                "status": "COMPLETED",
            },
        }
    else:
        data = {
            "id": f"pay_{uuid.uuid4().hex[:12]}",
            "externalReference": payment_id,
            "paymentDate": utc_now_iso()[:10],
            "billingType": "CREDIT_CARD",
        }
    return {"provider": provider, "event": event, "data": data}


def signature_headers(provider: str, raw_body: bytes, secret: str) -> dict:
    signature = generate_webhook_signature(raw_body, secret)
    if provider == "asaas":
        # Asaas sends the bare hex digest
        return {"asaas-signature": signature[len(SIGNATURE_PREFIX):]}
    return {"x-webhook-signature": signature}


def main():
    parser = argparse.ArgumentParser(
        description="Send a signed test webhook to the payment-webhook endpoint",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("provider", choices=sorted(DEFAULT_EVENTS))
    parser.add_argument("payment_id", help="Payment id (the provider external reference)")
    parser.add_argument("--event", help="Provider event name (default: the paid event)")
    parser.add_argument("--url", default=DEFAULT_URL, help=f"Endpoint URL (default: {DEFAULT_URL})")
    parser.add_argument("--secret", help="Signing secret (default: provider env var)")
    parser.add_argument("--timeout", type=float, default=10.0)
    args = parser.parse_args()

    secret = args.secret or os.getenv(f"{args.provider.upper()}_WEBHOOK_SECRET")
    if not secret:
        print(f"ERROR: no secret. Pass --secret or set {args.provider.upper()}_WEBHOOK_SECRET.")
        sys.exit(1)

    envelope = build_envelope(args.provider, args.event or DEFAULT_EVENTS[args.provider], args.payment_id)
    raw_body = json.dumps(envelope).encode("utf-8")
    headers = {"Content-Type": "application/json", **signature_headers(args.provider, raw_body, secret)}

    try:
        response = httpx.post(args.url, content=raw_body, headers=headers, timeout=args.timeout)
    except httpx.HTTPError as e:
        print(f"FAIL: {type(e).__name__}: {e}")
        sys.exit(1)

    print(f"HTTP {response.status_code} (X-Request-ID: {response.headers.get('X-Request-ID', '-')})")
    print(response.text)
    sys.exit(0 if response.is_success else 1)


if __name__ == "__main__":
    main()
