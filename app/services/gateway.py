import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import razorpay
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import GatewayError

logger = logging.getLogger(__name__)


class GatewayOrder(BaseModel):
    external_order_id: str
    amount: int
    currency: str


def format_gateway_error(error: Exception) -> str:
    """Razorpay errors come in a few shapes; pull out something readable."""
    error_body = getattr(error, "error", None)
    if isinstance(error_body, dict) and error_body.get("description"):
        return str(error_body["description"])
    description = getattr(error, "description", None)
    if description:
        return str(description)
    message = str(error)
    return message or type(error).__name__


class PaymentGateway(ABC):
    key_id: str = ""

    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    async def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, str]) -> GatewayOrder:
        ...


class RazorpayGateway(PaymentGateway):
    def __init__(self, key_id: str = None, key_secret: str = None, timeout: float = None):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS

        if self.key_id and self.key_secret:
            self.client: Optional[razorpay.Client] = razorpay.Client(auth=(self.key_id, self.key_secret))
        else:
            self.client = None
            logger.warning("Razorpay keys not set. Payment operations will fail.")

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, str]) -> GatewayOrder:
        if not self.client:
            raise GatewayError("Razorpay credentials are missing. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.")

        data = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        }

        try:
            # requests-level timeout bounds each socket read, wait_for bounds the whole call.
            order = await asyncio.wait_for(
                asyncio.to_thread(self.client.order.create, data=data, timeout=self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Razorpay order creation timed out after {self.timeout}s (receipt {receipt})")
            raise GatewayError("Payment gateway timed out")
        except Exception as e:
            message = format_gateway_error(e)
            logger.error(f"Error creating Razorpay order: {message}")
            raise GatewayError(message)

        return GatewayOrder(
            external_order_id=order["id"],
            amount=order.get("amount", amount),
            currency=order.get("currency", currency),
        )
