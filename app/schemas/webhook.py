"""
Razorpay webhook events.

The raw envelope is decoded once into one of a closed set of event types;
everything downstream dispatches on the type rather than on event strings.
"""
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict

PAYMENT_CAPTURED = "payment.captured"
PAYMENT_FAILED = "payment.failed"
ORDER_PAID = "order.paid"


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    payload: Dict[str, Any] = {}
    created_at: Optional[int] = None
    contains: Optional[List[str]] = None
    account_id: Optional[str] = None


class PaymentCaptured(BaseModel):
    payment_id: Optional[str] = None
    order_id: Optional[str] = None


class PaymentFailed(BaseModel):
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    error_description: Optional[str] = None


class OrderPaid(BaseModel):
    order_id: Optional[str] = None


class UnknownEvent(BaseModel):
    event_type: str


WebhookEvent = Union[PaymentCaptured, PaymentFailed, OrderPaid, UnknownEvent]


def _entity(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
    # Razorpay nests the object under "entity"; tolerate it being inlined too.
    section = payload.get(key) or {}
    if not isinstance(section, dict):
        return {}
    entity = section.get("entity", section)
    return entity if isinstance(entity, dict) else {}


def decode_event(envelope: WebhookEnvelope) -> WebhookEvent:
    if envelope.event == PAYMENT_CAPTURED:
        entity = _entity(envelope.payload, "payment")
        return PaymentCaptured(payment_id=entity.get("id"), order_id=entity.get("order_id"))
    if envelope.event == PAYMENT_FAILED:
        entity = _entity(envelope.payload, "payment")
        return PaymentFailed(
            payment_id=entity.get("id"),
            order_id=entity.get("order_id"),
            error_description=entity.get("error_description"),
        )
    if envelope.event == ORDER_PAID:
        entity = _entity(envelope.payload, "order")
        return OrderPaid(order_id=entity.get("id"))
    return UnknownEvent(event_type=envelope.event)
