"""
Inventory ledger: the product stock counter.

Both operations are a single UPDATE on one product row. ``reserve`` carries
the sufficiency check in its WHERE clause, so two concurrent reservations for
the last unit cannot both succeed.
"""

import logging

from django.db.models import F

from .errors import InsufficientStock, NotFound, ValidationFailed
from .models import Product

logger = logging.getLogger(__name__)


def _check_qty(qty: int):
    if qty <= 0:
        raise ValidationFailed("qty must be positive", qty=qty)


def reserve(product_id, qty: int) -> None:
    _check_qty(qty)
    updated = (Product.objects
               .filter(pk=product_id, stock__gte=qty)
               .update(stock=F("stock") - qty))
    if updated:
        return
    product = Product.objects.filter(pk=product_id).only("name", "stock").first()
    if product is None:
        raise NotFound("Product", product_id)
    logger.warning("reserve refused: product=%s requested=%s available=%s",
                   product_id, qty, product.stock)
    raise InsufficientStock(product_id, product.name, qty, product.stock)


def release(product_id, qty: int) -> None:
    _check_qty(qty)
    updated = Product.objects.filter(pk=product_id).update(stock=F("stock") + qty)
    if not updated:
        raise NotFound("Product", product_id)
