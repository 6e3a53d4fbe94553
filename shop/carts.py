from django.db import transaction
from django.db.models import F

from .errors import InsufficientStock, NotFound
from .models import Cart, CartItem, Product
from .pricing import money


def get_cart(user) -> Cart:
    cart, _ = Cart.objects.get_or_create(user=user)
    return cart


def cart_summary(cart: Cart) -> dict:
    items = list(cart.items.select_related("product"))
    return {
        "subtotal": money(sum((i.product.price * i.quantity for i in items), 0)),
        "item_count": sum(i.quantity for i in items),
    }


def _product(product_id) -> Product:
    product = Product.objects.filter(pk=product_id, is_active=True).first()
    if product is None:
        raise NotFound("Product", product_id)
    return product


def _users_item(user, item_id) -> CartItem:
    item = (CartItem.objects
            .select_related("product")
            .filter(pk=item_id, cart__user=user)
            .first())
    if item is None:
        raise NotFound("Cart item", item_id)
    return item


@transaction.atomic
def add_to_cart(*, user, product_id, quantity: int, size: str = "", color: str = "") -> Cart:
    """Same product/size/color merges into one line."""
    cart = get_cart(user)
    product = _product(product_id)
    size, color = size or "", color or ""

    item = CartItem.objects.filter(cart=cart, product=product, size=size, color=color).first()
    wanted = quantity + (item.quantity if item else 0)
    if product.stock < wanted:
        raise InsufficientStock(product.pk, product.name, wanted, product.stock)

    if item:
        CartItem.objects.filter(pk=item.pk).update(quantity=F("quantity") + quantity)
    else:
        CartItem.objects.create(cart=cart, product=product, quantity=quantity, size=size, color=color)
    return cart


def update_cart_item(*, user, item_id, quantity: int) -> CartItem:
    item = _users_item(user, item_id)
    if item.product.stock < quantity:
        raise InsufficientStock(item.product.pk, item.product.name, quantity, item.product.stock)
    item.quantity = quantity
    item.save(update_fields=["quantity"])
    return item


def remove_cart_item(*, user, item_id) -> None:
    _users_item(user, item_id).delete()


def clear_cart(user) -> None:
    CartItem.objects.filter(cart__user=user).delete()
