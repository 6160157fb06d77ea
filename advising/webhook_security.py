"""Signature checks for Resend delivery webhooks.

Resend signs every event with Svix: the ``svix-signature`` header holds one or
more space separated ``v1,<base64 hmac>`` entries computed over
``<svix-id>.<svix-timestamp>.<raw body>`` with the endpoint's ``whsec_`` secret.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

MAX_WEBHOOK_AGE_SECONDS = 300
SIGNATURE_VERSION = "v1"


def extract_svix_signing_key(secret: str) -> bytes:
    """Decode a ``whsec_`` secret into HMAC key bytes; undecodable secrets are used as-is."""
    encoded = secret[len("whsec_"):] if secret.startswith("whsec_") else secret
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return secret.encode("utf-8")


def compute_svix_signature(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    signed = b".".join([msg_id.encode("utf-8"), timestamp.encode("utf-8"), body])
    digest = hmac.new(extract_svix_signing_key(secret), signed, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_timestamp(timestamp: Optional[str], *, now: Optional[int] = None, max_age: int = MAX_WEBHOOK_AGE_SECONDS) -> bool:
    if not timestamp:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        logger.warning("Invalid webhook timestamp: %r", timestamp)
        return False
    age = abs((int(time.time()) if now is None else now) - sent_at)
    if age > max_age:
        logger.warning("Webhook timestamp outside tolerance: %ss old", age)
        return False
    return True


def verify_svix_signature(
    secret: str,
    *,
    msg_id: Optional[str],
    timestamp: Optional[str],
    signature_header: Optional[str],
    body: bytes,
    now: Optional[int] = None,
) -> bool:
    if not secret:
        logger.error("Webhook secret is not configured; rejecting event")
        return False
    if not msg_id or not signature_header:
        logger.warning("Webhook is missing svix headers")
        return False
    if not verify_timestamp(timestamp, now=now):
        return False

    expected = compute_svix_signature(secret, msg_id, timestamp, body)
    for entry in signature_header.split():
        version, _, signature = entry.partition(",")
        if version == SIGNATURE_VERSION and hmac.compare_digest(expected, signature):
            return True

    logger.warning("Webhook signature mismatch for %s", msg_id)
    return False
