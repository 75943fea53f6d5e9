"""HMAC-SHA256 signing of webhook bodies.

Receivers verify a delivery by recomputing the HMAC over the exact body
bytes with their copy of the subscription secret and comparing it with
the ``X-Webhook-Signature`` header.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

SIGNATURE_PREFIX = "sha256="


def serialize_payload(payload: dict[str, Any]) -> bytes:
    """Compact JSON encoding used as the request body (and signed as-is)."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_signature(secret: str, body: bytes | str) -> str:
    """Compute the HMAC-SHA256 signature of a webhook body.

    Args:
        secret: Shared subscription secret.
        body: Exact bytes sent on the wire (str is UTF-8 encoded).

    Returns:
        Signature in format "sha256=<hex_digest>".
    """
    if isinstance(body, str):
        body = body.encode("utf-8")
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, body: bytes | str, signature: str) -> bool:
    """Check a signature in constant time.

    Returns:
        True if signature matches the body, False otherwise.
    """
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected, signature)
