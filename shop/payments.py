"""
Payment settlement.

An order becomes PAID through ``settle_payment`` only. Both the synchronous
verify call and the webhook end up there, and it is a conditional update
guarded on ``payment_status != PAID``, so whichever path lands second is a
no-op.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.db.models import Case, F, Value, When
from django.utils import timezone

from . import gateway
from .errors import InvalidState, NotFound
from .models import Order, OrderStatus, PaymentStatus
from .pricing import to_minor_units

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
# processor states that mean "not yet", not "failed"
IN_FLIGHT = ("processing", "requires_action")

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"


@dataclass
class VerificationResult:
    status: str
    order: Order

    @property
    def paid(self):
        return self.status == SUCCEEDED

    @property
    def pending(self):
        return self.status in IN_FLIGHT


def _users_order(user, order_id) -> Order:
    order = Order.objects.filter(pk=order_id, user=user).first()
    if order is None:
        raise NotFound("Order", order_id)
    return order


def settle_payment(order_id) -> bool:
    """Mark the order PAID; True only for the call that actually did it."""
    now = timezone.now()
    applied = (Order.objects
               .filter(pk=order_id)
               .exclude(payment_status=PaymentStatus.PAID)
               .update(
                   payment_status=PaymentStatus.PAID,
                   paid_at=now,
                   updated_at=now,
                   order_status=Case(
                       When(order_status=OrderStatus.PENDING, then=Value(OrderStatus.PROCESSING)),
                       default=F("order_status"),
                   ),
               ))
    if applied:
        logger.info("payment settled: order=%s", order_id)
    else:
        logger.info("payment already settled: order=%s", order_id)
    return bool(applied)


def mark_payment_failed(order_id) -> bool:
    # a late failure event never overrides a recorded payment
    applied = (Order.objects
               .filter(pk=order_id)
               .exclude(payment_status=PaymentStatus.PAID)
               .update(payment_status=PaymentStatus.FAILED, updated_at=timezone.now()))
    if applied:
        logger.info("payment failed: order=%s", order_id)
    return bool(applied)


def create_intent(*, user, order_id) -> dict:
    order = _users_order(user, order_id)
    if order.is_paid:
        raise InvalidState("Order already paid", order_status=order.order_status)
    if order.order_status == OrderStatus.CANCELLED:
        raise InvalidState("Order is cancelled", order_status=order.order_status)

    intent = gateway.create_payment_intent(
        to_minor_units(order.total),
        metadata={"order_id": str(order.pk), "order_number": order.order_number},
    )
    Order.objects.filter(pk=order.pk).update(stripe_payment_id=intent["id"], updated_at=timezone.now())
    logger.info("payment intent %s created for order %s", intent["id"], order.order_number)
    return {"client_secret": intent["client_secret"], "payment_intent_id": intent["id"]}


def verify_payment(*, user, payment_intent_id: str, order_id) -> VerificationResult:
    order = _users_order(user, order_id)
    if order.stripe_payment_id != payment_intent_id:
        raise InvalidState("Payment intent does not belong to this order",
                           payment_intent_id=payment_intent_id)

    intent = gateway.retrieve_payment_intent(payment_intent_id)
    intent_status = intent["status"]
    if intent_status == SUCCEEDED:
        settle_payment(order.pk)
        order.refresh_from_db()
    elif intent_status not in IN_FLIGHT:
        logger.warning("payment verification failed: order=%s intent=%s status=%s",
                       order.order_number, payment_intent_id, intent_status)
    return VerificationResult(status=intent_status, order=order)


def _order_for_intent(intent_id) -> Optional[Order]:
    order = Order.objects.filter(stripe_payment_id=intent_id).first()
    if order is None:
        logger.warning("webhook for unknown payment intent %s", intent_id)
    return order


def handle_webhook(payload: bytes, signature: str) -> str:
    """Verify and apply one processor event. Returns the event type."""
    event = gateway.construct_event(payload, signature)
    event_type = event["type"]
    intent = event["data"]["object"]

    if event_type == EVENT_SUCCEEDED:
        order = _order_for_intent(intent["id"])
        if order is not None:
            settle_payment(order.pk)
    elif event_type == EVENT_FAILED:
        order = _order_for_intent(intent["id"])
        if order is not None:
            mark_payment_failed(order.pk)
    else:
        logger.info("unhandled webhook event type %s", event_type)
    return event_type
