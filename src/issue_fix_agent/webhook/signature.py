"""Webhook signature verification (HMAC SHA-256, as sent in X-Hub-Signature-256)."""

import hashlib
import hmac

from fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    """Compute the hex HMAC SHA-256 digest of the raw payload."""

    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def sign_payload(payload: bytes, secret: str) -> str:
    """Produce a signature header value for the payload."""

    return SIGNATURE_PREFIX + compute_signature(payload, secret)


def verify_signature(payload: bytes | None, signature_header: str | None, secret: str | None) -> bool:
    """Verify a webhook delivery against the shared secret.

    Args:
        payload: The exact raw request body.
        signature_header: The X-Hub-Signature-256 header value, with or without the `sha256=` prefix.
        secret: The shared webhook secret.

    Returns:
        True only if every input is present and the signature matches.
    """

    if not payload or not signature_header or not secret:
        logger.warning("Missing payload, signature or secret for signature verification")
        return False

    expected_signature = signature_header.strip().removeprefix(SIGNATURE_PREFIX)

    computed_signature = compute_signature(payload, secret)

    return hmac.compare_digest(computed_signature.encode("ascii"), expected_signature.encode("utf-8"))
