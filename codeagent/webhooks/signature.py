"""Webhook HMAC-SHA256 signature verification."""

from __future__ import annotations

import hashlib
import hmac

from codeagent.core.logging import get_logger

logger = get_logger("webhooks.signature")

SIGNATURE_PREFIX = "sha256="


class WebhookAuthError(Exception):
    """Raised when a delivery's signature does not match the shared secret."""


def sign(payload: bytes, secret: str) -> str:
    """Return the ``X-Hub-Signature-256`` header value for *payload*."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(signature: str | None, payload: bytes, secret: str) -> bool:
    """Verify a GitHub ``X-Hub-Signature-256`` header.

    Args:
        signature: Header value, e.g. ``sha256=abc…``.  May be missing.
        payload:   Raw request body bytes, exactly as received.
        secret:    Webhook secret.  Empty disables verification (local
                   testing only) and logs a warning on every call.

    Returns:
        True if the signature is valid or verification is disabled.
    """
    if not secret:
        logger.warning("webhook: GITHUB_WEBHOOK_SECRET is empty, skipping signature verification")
        return True
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(sign(payload, secret), signature)


def require_valid_signature(signature: str | None, payload: bytes, secret: str) -> None:
    """Like :func:`verify_signature` but raises :class:`WebhookAuthError`."""
    if not verify_signature(signature, payload, secret):
        raise WebhookAuthError("invalid webhook signature")
