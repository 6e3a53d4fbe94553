import logging
import secrets
import string
import time
import uuid
from collections import OrderedDict

from django.db import transaction
from django.db.models import Case, F, Value, When
from django.utils import timezone

from . import inventory
from .errors import InsufficientStock, InvalidState, NotFound, ValidationFailed
from .models import (
    CANCELLABLE_STATUSES,
    ORDER_FLOW,
    CartItem,
    Order,
    OrderItem,
    OrderStatus,
    Product,
)
from .notifications import dispatch_order_confirmation
from .pricing import quote

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
        if not n:
            return out


def generate_order_number() -> str:
    """SHN-<ms timestamp>-<5 random chars>, both base36."""
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"SHN-{stamp}-{suffix}"


def _normalize_items(items: list[dict]) -> list[dict]:
    normalized = []
    for it in items:
        try:
            product_id = uuid.UUID(str(it["product_id"]))
        except ValueError:
            raise ValidationFailed("Invalid product id", product_id=str(it["product_id"])) from None
        normalized.append({**it, "product_id": product_id})
    return normalized


def _demand_by_product(items: list[dict]) -> "OrderedDict":
    demand = OrderedDict()
    for it in items:
        q = int(it["quantity"])
        if q < 1:
            raise ValidationFailed("Quantity must be at least 1", product_id=str(it["product_id"]))
        demand[it["product_id"]] = demand.get(it["product_id"], 0) + q
    return demand


@transaction.atomic
def create_order(*, user, items: list[dict], shipping_address: dict, payment_method: str) -> Order:
    """items = [{'product_id': uuid, 'quantity': 2, 'size': 'M', 'color': 'red'}, ...]

    Order row, line items, stock reservations and the cart clear commit
    together or not at all. The confirmation mail goes out after commit.
    """
    if not items:
        raise ValidationFailed("Order must contain at least one item")
    items = _normalize_items(items)
    demand = _demand_by_product(items)

    # lock in pk order so two checkouts over the same products can't deadlock
    products = {
        p.pk: p
        for p in Product.objects.select_for_update().filter(pk__in=list(demand)).order_by("pk")
    }

    # every check runs before the first reservation
    for product_id, wanted in demand.items():
        p = products.get(product_id)
        if p is None or not p.is_active:
            raise NotFound("Product", product_id)
        if p.stock < wanted:
            raise InsufficientStock(p.pk, p.name, wanted, p.stock)

    totals = quote((products[it["product_id"]].price, int(it["quantity"])) for it in items)

    order = Order.objects.create(
        user=user,
        order_number=generate_order_number(),
        shipping_address=shipping_address,
        payment_method=payment_method,
        subtotal=totals.subtotal,
        shipping_cost=totals.shipping_cost,
        tax=totals.tax,
        total=totals.total,
    )
    OrderItem.objects.bulk_create([
        OrderItem(
            order=order,
            product=products[it["product_id"]],
            name=products[it["product_id"]].name,
            price=products[it["product_id"]].price,
            image=products[it["product_id"]].primary_image,
            quantity=int(it["quantity"]),
            size=it.get("size") or "",
            color=it.get("color") or "",
        )
        for it in items
    ])

    for product_id, wanted in demand.items():
        inventory.reserve(product_id, wanted)

    CartItem.objects.filter(cart__user=user).delete()

    logger.info("order created: %s user=%s total=%s lines=%d",
                order.order_number, user.pk, order.total, len(items))
    transaction.on_commit(lambda: dispatch_order_confirmation(order.pk), robust=True)
    return order


def list_orders(user):
    return (Order.objects
            .filter(user=user)
            .prefetch_related("items")
            .order_by("-created_at"))


def get_order(*, user, order_id) -> Order:
    order = Order.objects.prefetch_related("items").filter(pk=order_id, user=user).first()
    if order is None:
        raise NotFound("Order", order_id)
    return order


@transaction.atomic
def cancel_order(*, user, order_id) -> Order:
    order = Order.objects.select_for_update().filter(pk=order_id, user=user).first()
    if order is None:
        raise NotFound("Order", order_id)

    now = timezone.now()
    # guarded flip: only the caller that moves the status restores stock
    flipped = (Order.objects
               .filter(pk=order.pk, order_status__in=CANCELLABLE_STATUSES)
               .update(order_status=OrderStatus.CANCELLED, cancelled_at=now, updated_at=now))
    if not flipped:
        raise InvalidState("Order cannot be cancelled at this stage",
                           order_status=order.order_status)

    for item in order.items.all():
        inventory.release(item.product_id, item.quantity)

    order.refresh_from_db()
    logger.info("order cancelled: %s", order.order_number)
    return order


@transaction.atomic
def update_order_status(*, order_id, order_status: str, tracking_number: str = None) -> Order:
    """Staff fulfilment update; forward-only along ORDER_FLOW."""
    order = Order.objects.select_for_update().filter(pk=order_id).first()
    if order is None:
        raise NotFound("Order", order_id)

    if order_status == OrderStatus.CANCELLED:
        raise InvalidState("Use the cancel operation to cancel an order",
                           order_status=order.order_status)
    if order.order_status == OrderStatus.CANCELLED:
        raise InvalidState("Order is cancelled", order_status=order.order_status)
    if ORDER_FLOW.index(order_status) <= ORDER_FLOW.index(order.order_status):
        raise InvalidState(
            f"Cannot move order from {order.order_status} to {order_status}",
            order_status=order.order_status,
        )

    now = timezone.now()
    changes = {"order_status": order_status, "updated_at": now}
    if tracking_number:
        changes["tracking_number"] = tracking_number
    if order_status == OrderStatus.SHIPPED:
        changes["shipped_at"] = now
    elif order_status == OrderStatus.DELIVERED:
        changes["delivered_at"] = now
        # delivered without the SHIPPED step still gets a ship stamp
        changes["shipped_at"] = Case(
            When(shipped_at__isnull=True, then=Value(now)), default=F("shipped_at")
        )

    Order.objects.filter(pk=order.pk).update(**changes)
    order.refresh_from_db()
    logger.info("order %s -> %s", order.order_number, order.order_status)
    return order
