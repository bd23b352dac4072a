"""PII / secret / stack-trace sanitizer for log output.

Two-tier string processing:
 1. > MAX_STR_LOG  → truncate + sha256, never run regex
 2. ≤ MAX_STR_LOG  → full regex replacement

Webhook payloads are persisted unmodified in ``provider_data``; this module only
shapes what reaches the logs.
"""

import hashlib
import re
import traceback
from typing import Any

# ── Size thresholds ───────────────────────────────────────────────────────────
MAX_STR_LOG: int = 2048   # Truncate whole string; skip regex
MAX_DEPTH: int = 6         # Recursive object traversal limit

# ── Sensitive dict keys (lower-cased for comparison) ─────────────────────────
_SENSITIVE_KEYS: frozenset[str] = frozenset({
    "authorization", "token", "access_token", "refresh_token",
    "apikey", "api_key", "secret", "password", "key",
    "signature", "x-webhook-signature", "asaas-signature",
    "email", "phone", "taxid", "cpfcnpj", "document",
    "card", "cvv", "creditcard", "creditcardtoken",
})

# key=value / key: value pairs inside free text (exception messages, DSNs)
_KEY_VALUE_PATTERN = re.compile(
    r"(?<![\w-])(?:"
    + "|".join(re.escape(k) for k in sorted(_SENSITIVE_KEYS, key=len, reverse=True))
    + r")\s*[=:]\s*[^\s&,;]+",
    re.IGNORECASE,
)

# ── Pre-compiled regex patterns (module-level → compiled once) ────────────────
_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"Bearer \S+"),
    re.compile(r"Basic \S+"),
    re.compile(r"sha256=[0-9a-fA-F]+"),
    _KEY_VALUE_PATTERN,
]


def payload_hash_bytes(raw: bytes) -> str:
    """Return sha256 hex digest of raw bytes."""
    return hashlib.sha256(raw).hexdigest()


def sanitize_str(s: str) -> str:
    """Sanitize a string value according to the size gate.

    Returns a redacted / truncated string; never the original sensitive value.
    """
    if not isinstance(s, str):
        return s  # type: ignore[return-value]

    n = len(s)

    if n > MAX_STR_LOG:
        digest = hashlib.sha256(s.encode("utf-8", errors="replace")).hexdigest()[:16]
        return f"[TRUNCATED len={n} sha256={digest}]"

    result = s
    for pattern in _PATTERNS:
        result = pattern.sub("[REDACTED]", result)
    return result


def sanitize_obj(obj: Any, depth: int = 0) -> Any:
    """Recursively sanitize a log extra value.

    - dict: redact sensitive keys, recurse others
    - list/tuple: recurse each element
    - str: run sanitize_str()
    - other: return as-is
    """
    if depth >= MAX_DEPTH:
        return "[DEPTH_LIMIT]"

    if isinstance(obj, dict):
        result: dict[str, Any] = {}
        for key, value in obj.items():
            if isinstance(key, str) and key.lower() in _SENSITIVE_KEYS:
                result[key] = "[REDACTED]"
            else:
                result[key] = sanitize_obj(value, depth + 1)
        return result

    if isinstance(obj, (list, tuple)):
        return [sanitize_obj(item, depth + 1) for item in obj]

    if isinstance(obj, str):
        return sanitize_str(obj)

    return obj


def sanitize_exc(exc_info: tuple) -> str:
    """Format an exc_info tuple into a sanitized traceback string.

    Uses capture_locals=False so local variable values (which may hold the
    webhook secret) never reach log output.
    """
    _type, value, _tb = exc_info
    if value is None:
        return ""
    try:
        te = traceback.TracebackException.from_exception(value, capture_locals=False)
        formatted = "".join(te.format())
        return sanitize_str(formatted)
    except Exception:
        return "[TRACEBACK_FORMAT_ERROR]"
