"""
Customer email. Order confirmation is fire-and-forget: it is scheduled after
the order transaction commits and any failure is logged and dropped.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

from django.conf import settings
from django.core.mail import send_mail

from .models import Order

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="shop-mail")


def _greeting_name(user):
    return user.first_name or user.get_username()


def send_order_confirmation(user, order: Order) -> None:
    order_url = f"{settings.CLIENT_URL}/orders/{order.id}"
    name = _greeting_name(user)
    text = (
        f"Hi {name},\n\n"
        f"Your order #{order.order_number} has been confirmed!\n"
        f"Total: {order.total}\n\n"
        f"We'll send you another email when your order ships.\n"
        f"View order: {order_url}\n"
    )
    html = (
        "<h1>Order Confirmation</h1>"
        f"<p>Hi {name},</p>"
        f"<p>Your order #{order.order_number} has been confirmed!</p>"
        f"<p>Total: &#8377;{order.total}</p>"
        "<p>We'll send you another email when your order ships.</p>"
        f'<a href="{order_url}">View Order</a>'
    )
    send_mail(
        subject=f"Order Confirmation - {order.order_number}",
        message=text,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[user.email],
        html_message=html,
    )
    logger.info("confirmation mail sent: order=%s to=%s", order.order_number, user.email)


def _send_quietly(user, order):
    try:
        send_order_confirmation(user, order)
    except Exception:
        logger.exception("confirmation mail failed: order=%s", order.order_number)


def dispatch_order_confirmation(order_id) -> None:
    """Run from ``transaction.on_commit``; never raises into the request."""
    try:
        order = Order.objects.select_related("user").get(pk=order_id)
    except Order.DoesNotExist:
        logger.warning("confirmation skipped, order %s vanished", order_id)
        return
    except Exception:
        logger.exception("confirmation skipped, could not load order %s", order_id)
        return
    if not order.user.email:
        logger.info("confirmation skipped, user %s has no email", order.user_id)
        return
    if settings.SHOP_NOTIFY_INLINE:
        _send_quietly(order.user, order)
    else:
        _executor.submit(_send_quietly, order.user, order)
