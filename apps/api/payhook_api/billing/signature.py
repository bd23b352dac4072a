"""HMAC-SHA256 webhook signature verification.

OpenPix sends ``sha256=<hex>``; Asaas sends the bare hex digest. Both are
computed over the exact raw request body with the provider's shared secret.
"""

import hashlib
import hmac
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def _digest(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    raw_body: Optional[bytes],
    signature: Optional[str],
    secret: Optional[str],
) -> bool:
    """Check that ``raw_body`` was signed with ``secret``.

    Fails closed: a missing body, secret or signature, or any error while
    hashing, yields False. Never raises.

    Args:
        raw_body: Request body bytes exactly as received
        signature: Header value, with or without the ``sha256=`` prefix
        secret: Shared secret configured for the provider

    Returns:
        True if the signature matches
    """
    try:
        if not raw_body or not secret or not signature:
            return False

        provided = signature.strip()
        if provided.startswith(SIGNATURE_PREFIX):
            provided = provided[len(SIGNATURE_PREFIX):]

        expected = _digest(raw_body, secret)
        # compare_digest rejects non-ASCII str input with TypeError
        return hmac.compare_digest(expected, provided)
    except Exception:
        logger.warning("WEBHOOK_SIGNATURE_VERIFY_ERROR", exc_info=True)
        return False


def generate_webhook_signature(payload: Union[bytes, str], secret: str) -> str:
    """Sign a payload the way OpenPix does (``sha256=<hex>``)."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return f"{SIGNATURE_PREFIX}{_digest(payload, secret)}"
