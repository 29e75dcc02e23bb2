"""HMAC signatures for inbound approval callbacks.

The chat integration signs ``"{timestamp}.{raw body}"`` with a shared secret
and sends ``X-Signature: sha256=<hex>`` plus ``X-Signature-Timestamp``.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time

from remediation_core.errors import SignatureInvalid

SIGNATURE_HEADER = "x-signature"
TIMESTAMP_HEADER = "x-signature-timestamp"
_PREFIX = "sha256="


def sign(secret: str, timestamp: str, body: bytes) -> str:
    message = timestamp.encode("utf-8") + b"." + body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return _PREFIX + digest


def verify_signature(
    secret: str | None,
    body: bytes,
    signature: str | None,
    timestamp: str | None,
    *,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """Raise ``SignatureInvalid`` unless the callback is authentic and fresh."""
    if not secret:
        raise SignatureInvalid("Approval callback secret is not configured")
    if not signature or not timestamp:
        raise SignatureInvalid("Missing signature headers")
    try:
        sent_at = int(timestamp)
    except ValueError as exc:
        raise SignatureInvalid("Malformed signature timestamp") from exc

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_seconds:
        raise SignatureInvalid(
            "Signature timestamp outside tolerance",
            details={"skew_seconds": int(current - sent_at)},
        )

    expected = sign(secret, timestamp, body)
    if not secrets.compare_digest(expected, signature.strip()):
        raise SignatureInvalid("Signature mismatch")
