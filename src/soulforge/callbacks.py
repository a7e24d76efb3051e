"""Signed status callbacks from the x402pay rail."""

import hashlib
import hmac

from pydantic import BaseModel, Field


class X402PayCallback(BaseModel):
    """Status notification pushed by x402pay."""

    paymentId: str = Field(description="x402pay payment identifier")
    status: str = Field(description="New payment status")


def sign_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a callback body."""
    if not secret:
        raise ValueError("Webhook secret is required for signing")
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_callback_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Verify HMAC-SHA256 signature of a callback body.

    Args:
        payload: Raw request body.
        signature: Hex-encoded HMAC from the X-Webhook-Signature header.
        secret: Shared secret.

    Returns:
        True if the signature matches.
    """
    if not signature or not secret:
        return False
    # Constant-time comparison
    return hmac.compare_digest(sign_payload(payload, secret), signature)
