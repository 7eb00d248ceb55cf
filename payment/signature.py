# src/payment/signature.py
import hashlib
import hmac
import logging
from typing import Optional, Union

from config import settings
from errors import ConfigurationError

logger = logging.getLogger(__name__)


def compute_signature(secret: str, message: Union[bytes, str]) -> str:
    """Hex HMAC-SHA256 of message under secret."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, provided: Optional[str]) -> bool:
    if not isinstance(provided, str):
        return False
    candidate = provided.strip().lower()
    if not candidate:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


class SignatureVerifier:
    """Checks Razorpay checkout and webhook signatures.

    Checkout signatures cover ``"<order_id>|<payment_id>"`` and are keyed with
    the API key secret; webhook signatures cover the raw request body and are
    keyed with the webhook secret. Both comparisons are constant time.
    """

    def __init__(self, key_secret: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.key_secret = settings.RAZORPAY_KEY_SECRET if key_secret is None else key_secret
        self.webhook_secret = settings.RAZORPAY_WEBHOOK_SECRET if webhook_secret is None else webhook_secret

    def verify_direct(self, order_id: Optional[str], payment_id: Optional[str], signature: Optional[str]) -> bool:
        if not self.key_secret:
            logger.error("RAZORPAY_KEY_SECRET is not configured")
            raise ConfigurationError("Payment verification is not configured.")
        if not isinstance(order_id, str) or not isinstance(payment_id, str):
            return False
        if not order_id or not payment_id:
            return False
        expected = compute_signature(self.key_secret, f"{order_id}|{payment_id}")
        return _matches(expected, signature)

    def verify_webhook(self, raw_body: Union[bytes, str, None], signature_header: Optional[str]) -> bool:
        """Verify over the exact bytes received; the body must not be parsed first."""
        if not self.webhook_secret:
            logger.error("RAZORPAY_WEBHOOK_SECRET is not configured")
            raise ConfigurationError("Webhook verification is not configured.")
        if not raw_body:
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        expected = compute_signature(self.webhook_secret, raw_body)
        return _matches(expected, signature_header)
