"""
Webhook signature verification.

PayChangu deliveries are signed with HMAC-SHA256 over the raw request body
using the shared webhook secret; the hex digest is sent in the
`X-PayChangu-Signature` header, optionally prefixed with `sha256=`.
"""

import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger("dinetrack.payments.webhook")

SIGNATURE_HEADER = "X-PayChangu-Signature"


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes,
    signature: Optional[str],
    secret: Optional[str],
    allow_unsigned: bool = False,
) -> bool:
    """
    Check a delivery's signature.

    Without a configured secret every delivery is rejected unless
    `allow_unsigned` is set (local development only).
    """
    if not secret:
        if allow_unsigned:
            logger.warning("No webhook secret configured, accepting unsigned delivery")
            return True
        logger.error("No webhook secret configured, rejecting delivery")
        return False

    if not signature:
        return False

    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]

    expected = compute_signature(payload, secret)
    # header values arrive latin-1 decoded and may hold non-ASCII characters
    return hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8", "surrogateescape"))
