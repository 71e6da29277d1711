from __future__ import annotations

import hashlib
import hmac


def sign_payload(raw_body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 digest Lemon Squeezy sends in X-Signature."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Check a signature header against the raw request body.

    The comparison is exact and case-sensitive, and runs in constant time.
    """
    expected = sign_payload(raw_body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
