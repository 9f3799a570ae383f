"""
Pi Network webhook authenticity checks

The provider signs ``"{timestamp}.{body}"`` with HMAC-SHA256 using the
shared secret and sends the hex digest in ``x-pi-signature`` and the epoch
milliseconds in ``x-pi-timestamp``. Both checks are stateless and fail
closed.
"""
import hashlib
import hmac
import time
from typing import Optional

from travelpi.core.logging_config import logger

DEFAULT_TOLERANCE_SECONDS = 5 * 60


def compute_signature(body: str, timestamp: str, secret: str) -> str:
    payload = f"{timestamp}.{body}"
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(
    body: str,
    signature: Optional[str],
    timestamp: Optional[str],
    secret: Optional[str],
) -> bool:
    """Constant-time comparison of the provided signature with the expected one"""
    if not secret:
        logger.error("PI_SECRET_KEY not configured, rejecting webhook")
        return False
    if not signature or not timestamp or body is None:
        return False

    try:
        expected = compute_signature(body, timestamp, secret)
        return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))
    except Exception as e:
        logger.error(f"Signature verification failed: {str(e)}")
        return False


def is_timestamp_fresh(
    timestamp: Optional[str],
    now_ms: Optional[int] = None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> bool:
    """False when the timestamp is malformed or older than the tolerance"""
    try:
        sent_ms = int(timestamp)
    except (TypeError, ValueError):
        return False

    if now_ms is None:
        now_ms = int(time.time() * 1000)

    return now_ms - sent_ms <= tolerance_seconds * 1000
