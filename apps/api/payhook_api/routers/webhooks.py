"""Payment webhook handler (OpenPix + Asaas).

One delivery is one stateless request:
  Received → SignatureChecked → Normalized → StoreUpdated → CascadeAttempted → Responded

Error taxonomy (retry storm prevention):
  (A) Invalid JSON / malformed envelope or payload → 400
  (B) Unknown provider                             → 400
  (C) Signature invalid / secret not configured    → 401  (NEVER 500)
  (D) Payment not found / store failure            → 500 + Retry-After (provider retries)
  (E) Anything unexpected                          → 500 generic body
Unrecognized events are acknowledged with 200 so the provider stops
redelivering them. Plan activation failures never change the response.
"""

import json as _json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from payhook_api.billing.errors import MalformedPayload, SignatureInvalid, WebhookError
from payhook_api.billing.payment_store import PaymentStore
from payhook_api.billing.plan_activation import activate_company_plan, should_activate_plan
from payhook_api.billing.providers import Unhandled, normalize, resolve_provider
from payhook_api.billing.signature import verify_webhook_signature
from payhook_api.config.env import WebhookSettings
from payhook_api.context import payment_id_var, provider_var, request_id_var
from payhook_api.dependencies import get_payment_store, get_settings
from payhook_api.schemas import ErrorResponse, WebhookAck, WebhookEnvelope
from payhook_api.utils.sanitize import payload_hash_bytes, sanitize_str

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)

WEBHOOK_PATHS = ("/payment-webhook", "/functions/v1/payment-webhook")
SIGNATURE_HEADERS = ("x-webhook-signature", "asaas-signature")

WEBHOOK_RESPONSES = {
    200: {"model": WebhookAck, "description": "Payment row, or the not-processed marker"},
    400: {"model": ErrorResponse, "description": "Invalid JSON, envelope, payload or provider"},
    401: {"model": ErrorResponse, "description": "Invalid webhook signature"},
    500: {"model": ErrorResponse, "description": "Retryable failure (Retry-After: 60)"},
}


def _webhook_error(
    status: int,
    *,
    code: str,
    message: str,
    provider: Optional[str],
    payload_hash: Optional[str],
    extra: Optional[dict] = None,
    exc_info: bool = False,
) -> JSONResponse:
    """Log once + return the JSON error body.

    4xx failures → warning log.
    5xx failures → error log + Retry-After: 60 response header.
    """
    log_extra: dict = {
        "provider": provider,
        "payload_hash": payload_hash,
        "error_code": code,
        "status_code": status,
    }
    request_id = request_id_var.get()
    if request_id:
        log_extra["request_id"] = request_id
    if extra:
        log_extra.update(extra)

    if status >= 500:
        logger.error(code, extra=log_extra, exc_info=exc_info)
    else:
        logger.warning(code, extra=log_extra)

    headers = {"Retry-After": "60"} if status >= 500 else None
    return JSONResponse(
        status_code=status,
        content={"error": message, "error_code": code},
        headers=headers,
    )


def _from_webhook_error(
    exc: WebhookError, *, provider: Optional[str], payload_hash: str
) -> JSONResponse:
    return _webhook_error(
        exc.status_code,
        code=exc.error_code,
        message=exc.public_message,
        provider=provider,
        payload_hash=payload_hash,
        extra={"error_msg": sanitize_str(str(exc))},
    )


def _signature_from(request: Request) -> Optional[str]:
    for header in SIGNATURE_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


@router.options(WEBHOOK_PATHS[0], include_in_schema=False)
@router.options(WEBHOOK_PATHS[1], include_in_schema=False)
async def payment_webhook_preflight() -> PlainTextResponse:
    """CORS preflight; the CORS headers are added by the app middleware."""
    return PlainTextResponse("ok")


@router.post(WEBHOOK_PATHS[0], responses=WEBHOOK_RESPONSES)
@router.post(WEBHOOK_PATHS[1], responses=WEBHOOK_RESPONSES, include_in_schema=False)
async def payment_webhook(
    request: Request,
    store: PaymentStore = Depends(get_payment_store),
    settings: WebhookSettings = Depends(get_settings),
):
    """Payment provider webhook (OpenPix, Asaas).

    Body: ``{"provider": "openpix"|"asaas", "event": str, "data": object}``
    Signature: ``x-webhook-signature`` or ``asaas-signature`` (HMAC-SHA256 of the raw body)
    """
    raw_body: bytes = await request.body()
    payload_hash = payload_hash_bytes(raw_body)
    request.state.payload_hash = payload_hash

    try:
        return await _process_delivery(request, raw_body, payload_hash, store, settings)
    except Exception as exc:
        return _webhook_error(
            500,
            code="WEBHOOK_INTERNAL_ERROR",
            message="Internal server error",
            provider=provider_var.get() or None,
            payload_hash=payload_hash,
            extra={"error_type": type(exc).__name__, "error_msg": sanitize_str(str(exc))},
            exc_info=True,
        )


async def _process_delivery(
    request: Request,
    raw_body: bytes,
    payload_hash: str,
    store: PaymentStore,
    settings: WebhookSettings,
) -> JSONResponse:
    # ── Received: JSON parsing (A → 400) ─────────────────────────────────────
    try:
        body: Any = _json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return _webhook_error(
            400,
            code="WEBHOOK_INVALID_JSON",
            message="Invalid JSON payload",
            provider=None,
            payload_hash=payload_hash,
        )

    try:
        envelope = WebhookEnvelope.model_validate(body)
    except ValidationError as exc:
        return _webhook_error(
            400,
            code=MalformedPayload.error_code,
            message=MalformedPayload.public_message,
            provider=body.get("provider") if isinstance(body, dict) else None,
            payload_hash=payload_hash,
            extra={"error_count": exc.error_count()},
        )

    logger.info(
        "WEBHOOK_RECEIVED",
        extra={
            "provider": envelope.provider,
            "webhook_event": envelope.event,
            "payload_hash": payload_hash,
            "payload_size": len(raw_body),
        },
    )

    # ── Provider resolution (B → 400) ────────────────────────────────────────
    try:
        provider = resolve_provider(envelope.provider)
    except WebhookError as exc:
        return _from_webhook_error(exc, provider=envelope.provider, payload_hash=payload_hash)
    provider_var.set(provider.value)

    # ── SignatureChecked (C → 401) ───────────────────────────────────────────
    secret = settings.secret_for(provider)
    if not verify_webhook_signature(raw_body, _signature_from(request), secret):
        return _webhook_error(
            SignatureInvalid.status_code,
            code=SignatureInvalid.error_code,
            message=SignatureInvalid.public_message,
            provider=provider.value,
            payload_hash=payload_hash,
            extra={"reason": "secret_not_configured" if not secret else "mismatch"},
        )

    # ── Normalized (A → 400, unhandled → 200) ────────────────────────────────
    try:
        result = normalize(provider, envelope.event, envelope.data)
    except WebhookError as exc:
        return _from_webhook_error(exc, provider=provider.value, payload_hash=payload_hash)

    if isinstance(result, Unhandled):
        return JSONResponse(status_code=200, content={"success": True, "data": result.to_response()})

    payment_id_var.set(result.external_reference)

    # ── StoreUpdated (D → 500) ───────────────────────────────────────────────
    try:
        update = await run_in_threadpool(
            store.apply_update,
            result.external_reference,
            result.status,
            provider_payment_id=result.provider_payment_id,
            paid_at=result.paid_at,
            raw_payload=result.raw_payload,
        )
    except WebhookError as exc:
        return _from_webhook_error(exc, provider=provider.value, payload_hash=payload_hash)

    # ── CascadeAttempted (never affects the response) ────────────────────────
    if should_activate_plan(result.status.value, update.payment):
        cascade = await run_in_threadpool(activate_company_plan, store, update.payment)
        if not cascade.ok:
            request.state.cascade_warning = cascade.warning

    logger.info(
        "WEBHOOK_PROCESSED",
        extra={
            "provider": provider.value,
            "webhook_event": envelope.event,
            "payload_hash": payload_hash,
            "outcome": update.outcome,
            "status": update.status,
        },
    )

    # ── Responded ────────────────────────────────────────────────────────────
    return JSONResponse(status_code=200, content={"success": True, "data": update.payment})
