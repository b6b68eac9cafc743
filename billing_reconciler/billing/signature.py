"""HMAC-SHA256 verification of webhook bodies."""

import hashlib
import hmac


def compute_signature(payload: bytes | str, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes | str, signature: str, secret: str) -> bool:
    """Return True if ``signature`` matches the body signed with ``secret``.

    ``payload`` must be the body exactly as received. Parsing and
    re-serializing it changes the bytes and breaks the comparison.
    """
    if not signature or not secret:
        return False
    expected = compute_signature(payload, secret)
    try:
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii"))
    except UnicodeEncodeError:
        return False
