"""HMAC verification for payment gateway webhook deliveries."""

from __future__ import annotations

import base64
import hmac
import logging
from dataclasses import dataclass
from hashlib import sha256

logger = logging.getLogger(__name__)

MATCH_RAW = "raw"
MATCH_TEXT = "text"


@dataclass(frozen=True)
class SignatureVerification:
    verified: bool
    matched: str | None = None
    reason: str | None = None


def _digest(secret: str, payload: bytes) -> str:
    mac = hmac.new(secret.encode("utf-8"), msg=payload, digestmod=sha256)
    return base64.b64encode(mac.digest()).decode("ascii")


def sign_webhook_body(raw_body: bytes, secret: str) -> str:
    """Return the base64 HMAC-SHA256 header value the gateway would send."""
    return _digest(secret, raw_body)


def _candidates(raw_body: bytes) -> list[tuple[str, bytes]]:
    candidates = [(MATCH_RAW, raw_body)]
    # proxies occasionally re-encode bodies; accept the canonical UTF-8 form too
    text_form = raw_body.decode("utf-8", errors="replace").encode("utf-8")
    if text_form != raw_body:
        candidates.append((MATCH_TEXT, text_form))
    return candidates


def verify_webhook_signature(
    raw_body: bytes, signature: str | None, secret: str | None
) -> SignatureVerification:
    """Check a claimed signature against the raw body; fails closed on missing inputs."""
    if not secret:
        logger.error("billing.webhook.secret_missing")
        return SignatureVerification(verified=False, reason="missing_secret")
    if not signature:
        logger.warning("billing.webhook.signature_missing")
        return SignatureVerification(verified=False, reason="missing_signature")

    claimed = signature.strip().encode("utf-8")
    for label, payload in _candidates(raw_body):
        if hmac.compare_digest(_digest(secret, payload).encode("ascii"), claimed):
            if label != MATCH_RAW:
                logger.info("billing.webhook.signature_text_match")
            return SignatureVerification(verified=True, matched=label)

    logger.warning("billing.webhook.signature_mismatch", extra={"body_bytes": len(raw_body)})
    return SignatureVerification(verified=False, reason="mismatch")
