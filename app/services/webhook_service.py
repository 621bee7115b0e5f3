import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.exceptions import VerificationError
from app.core.signature import verify_webhook_signature
from app.schemas.payment import PaymentStatus
from app.schemas.webhook import (
    OrderPaid,
    PaymentCaptured,
    PaymentFailed,
    UnknownEvent,
    WebhookEnvelope,
    decode_event,
)
from app.services.order_store import OrderStore
from app.services.user_store import UserStore

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Payment failed"


class WebhookService:
    """
    Applies Razorpay webhook events to local payment records.

    Processing errors never reach the caller: they are logged and turned into
    a {"processed": False, "error": ...} acknowledgement so Razorpay does not
    keep redelivering the event.
    """

    def __init__(self, orders: OrderStore, users: UserStore, webhook_secret: Optional[str] = None):
        self.orders = orders
        self.users = users
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
        if not self.webhook_secret:
            logger.warning("RAZORPAY_WEBHOOK_SECRET not set. Webhook signatures will not be verified.")

    def check_signature(self, body: bytes, signature: Optional[str]) -> None:
        if not self.webhook_secret:
            return
        if not verify_webhook_signature(body, signature, self.webhook_secret):
            logger.warning("Rejected webhook with invalid signature")
            raise VerificationError("Invalid webhook signature")

    async def process_webhook(self, body: bytes, signature: Optional[str], event_id: Optional[str] = None) -> Dict[str, Any]:
        self.check_signature(body, signature)

        try:
            envelope = WebhookEnvelope.model_validate(json.loads(body))
        except (ValueError, PydanticValidationError) as e:
            logger.error(f"Malformed webhook body: {e}")
            return {"processed": False, "error": "Malformed webhook body"}

        return await self.handle_event(envelope, event_id)

    async def handle_event(self, envelope: WebhookEnvelope, event_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            event = decode_event(envelope)
            if isinstance(event, PaymentCaptured):
                return await self._payment_captured(event)
            if isinstance(event, PaymentFailed):
                return await self._payment_failed(event)
            if isinstance(event, OrderPaid):
                return await self._order_paid(event, event_id)
            if isinstance(event, UnknownEvent):
                logger.info(f"Unhandled webhook event: {event.event_type}")
                return {"processed": False, "event": event.event_type}
            raise TypeError(f"Unexpected webhook event {event!r}")
        except Exception as e:
            logger.exception(f"Webhook processing failed for event {envelope.event}")
            return {"processed": False, "event": envelope.event, "error": str(e)}

    async def _payment_captured(self, event: PaymentCaptured) -> Dict[str, Any]:
        record = await self.orders.find_by_external_order_id(event.order_id) if event.order_id else None
        if record is None:
            logger.warning(f"payment.captured for unknown order {event.order_id}")
        elif record.status == PaymentStatus.PENDING:
            updated, applied = await self.orders.update_to_completed(record, event.payment_id, None)
            if applied:
                logger.info(f"Order {event.order_id} completed via webhook (payment {event.payment_id})")
                await self.users.set_premium(updated.user_id)
        return {"processed": True, "paymentId": event.payment_id}

    async def _payment_failed(self, event: PaymentFailed) -> Dict[str, Any]:
        record = await self.orders.find_by_external_order_id(event.order_id) if event.order_id else None
        if record is None:
            logger.warning(f"payment.failed for unknown order {event.order_id}")
        elif record.status == PaymentStatus.PENDING:
            _, applied = await self.orders.update_to_failed(record, event.error_description or DEFAULT_FAILURE_REASON)
            if applied:
                logger.info(f"Order {event.order_id} failed via webhook: {event.error_description}")
        return {"processed": True, "paymentId": event.payment_id}

    async def _order_paid(self, event: OrderPaid, event_id: Optional[str]) -> Dict[str, Any]:
        if event.order_id:
            record = await self.orders.record_webhook_event(event.order_id, event_id or event.order_id)
            if record is None:
                logger.warning(f"order.paid for unknown order {event.order_id}")
        return {"processed": True, "orderId": event.order_id}
