import logging
from typing import Optional

from razorpay.errors import SignatureVerificationError
from razorpay.utility import Utility

logger = logging.getLogger(__name__)

# Signature checks only need the secret, never API credentials.
utility = Utility()


def verify_payment_signature(order_id: str, payment_id: str, signature: Optional[str], secret: str) -> bool:
    """
    Checks the signature Razorpay hands the client after checkout:
    HMAC-SHA256 of "<order_id>|<payment_id>" keyed with the API key secret.

    Never raises. Anything unexpected (missing secret, non-string input)
    counts as a mismatch.
    """
    if not secret or not signature:
        return False
    try:
        return utility.verify_payment_signature({
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature,
            "secret": secret,
        })
    except SignatureVerificationError:
        return False
    except Exception as e:
        logger.warning(f"Payment signature check errored: {type(e).__name__}")
        return False


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """HMAC-SHA256 of the raw webhook body keyed with the webhook secret."""
    if not secret or not signature:
        return False
    try:
        return utility.verify_webhook_signature(body.decode("utf-8"), signature, secret)
    except SignatureVerificationError:
        return False
    except Exception as e:
        logger.warning(f"Webhook signature check errored: {type(e).__name__}")
        return False
