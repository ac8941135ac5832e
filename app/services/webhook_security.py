"""
Shopify webhook signature verification shared by every webhook endpoint.
One policy for all topics (settings.WEBHOOK_SIGNATURE_POLICY):
  strict   -> bad or missing signature is rejected (401)
  log_only -> bad signature is logged and processing continues
"""
import base64
import hashlib
import hmac
import logging
from typing import Optional

from app.config import settings

logger = logging.getLogger(__name__)

POLICY_STRICT = "strict"
POLICY_LOG_ONLY = "log_only"

_CONNECTIVITY_BODIES = {b"", b"{}", b"null"}


class WebhookSignatureError(Exception):
    """Raised under the strict policy when a webhook signature does not verify."""


def compute_webhook_hmac(body: bytes, secret: str) -> str:
    """base64(HMAC-SHA256(secret, raw_body)), the value Shopify sends in X-Shopify-Hmac-Sha256."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_hmac(body: bytes, hmac_header: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify X-Shopify-Hmac-Sha256 against the raw body in constant time.
    Accepts an optional "sha256=" prefix on the header.
    """
    if not secret or not hmac_header or not body:
        return False
    received = hmac_header.strip()
    if received.lower().startswith("sha256="):
        received = received[len("sha256="):]
    return hmac.compare_digest(compute_webhook_hmac(body, secret), received)


def is_connectivity_test(body: bytes) -> bool:
    """Empty or minimal bodies are sent by Shopify/admin tooling to check the endpoint is reachable."""
    return body.strip() in _CONNECTIVITY_BODIES


def enforce_webhook_signature(
    body: bytes,
    hmac_header: Optional[str],
    topic: str = "",
    secret: Optional[str] = None,
    policy: Optional[str] = None,
) -> bool:
    """
    Apply the signature policy. Returns True when the signature verified.
    Raises WebhookSignatureError under the strict policy when it did not.
    """
    secret = secret if secret is not None else settings.SHOPIFY_WEBHOOK_SECRET
    policy = (policy or settings.WEBHOOK_SIGNATURE_POLICY or POLICY_STRICT).lower()

    if not secret:
        if policy == POLICY_STRICT:
            logger.error("Shopify webhook %s rejected: SHOPIFY_WEBHOOK_SECRET is not configured", topic)
            raise WebhookSignatureError("Webhook secret not configured")
        logger.warning("Shopify webhook %s: SHOPIFY_WEBHOOK_SECRET not configured, signature not checked", topic)
        return False

    if verify_webhook_hmac(body, hmac_header, secret):
        return True

    if policy == POLICY_STRICT:
        logger.warning("Shopify webhook %s: HMAC verification failed, rejecting", topic)
        raise WebhookSignatureError("Invalid webhook signature")
    logger.warning("Shopify webhook %s: HMAC verification failed, continuing (policy=%s)", topic, policy)
    return False
