"""
HMAC helpers shared by payment, credential and queue-token verification.

Signatures arrive from untrusted clients and may contain any character, so
comparisons are done on bytes; a non-ASCII forgery is simply a mismatch.
"""

import hashlib
import hmac
from typing import Optional


def hmac_hex(secret: str, message: str | bytes) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, given: Optional[str]) -> bool:
    """Constant-time comparison that never raises on hostile input."""
    if not given or not isinstance(given, str):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), given.encode("utf-8", "surrogatepass"))
