"""HMAC-SHA256 helpers for Razorpay checkout and webhook signatures."""

import hashlib
import hmac
from typing import Optional, Union


def hmac_sha256_hex(secret: str, message: Union[str, bytes]) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def payment_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Signature Razorpay Checkout hands to the client: HMAC of ``order|payment``."""
    return hmac_sha256_hex(secret, f"{order_id}|{payment_id}")


def signatures_match(expected: str, received: Optional[str]) -> bool:
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.strip().encode("utf-8"))


def redact(signature: Optional[str], keep: int = 12) -> str:
    if not signature:
        return "<missing>"
    return f"{signature[:keep]}..."
