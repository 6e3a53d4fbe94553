from rest_framework import serializers

from .models import Cart, CartItem, Order, OrderItem, OrderStatus, PaymentMethod


class ShippingAddressIn(serializers.Serializer):
    first_name = serializers.CharField(max_length=100)
    last_name = serializers.CharField(max_length=100)
    street = serializers.CharField(max_length=255)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100)
    zip_code = serializers.CharField(max_length=20)
    country = serializers.CharField(max_length=100, default="India")
    phone = serializers.RegexField(r"^\+?[0-9][0-9 \-]{6,18}$", max_length=20)


class OrderItemIn(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    size = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    color = serializers.CharField(max_length=40, required=False, allow_blank=True, default="")


class OrderCreateIn(serializers.Serializer):
    items = OrderItemIn(many=True)
    shipping_address = ShippingAddressIn()
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices)

    def validate_items(self, items):
        if not items:
            raise serializers.ValidationError("Order must contain at least one item.")
        return items


class OrderStatusIn(serializers.Serializer):
    order_status = serializers.ChoiceField(
        choices=[s for s in OrderStatus.values if s != OrderStatus.CANCELLED]
    )
    tracking_number = serializers.CharField(max_length=120, required=False, allow_blank=True)

    def to_internal_value(self, data):
        # accept lower-case statuses from admin clients
        if isinstance(data, dict) and isinstance(data.get("order_status"), str):
            data = {**data, "order_status": data["order_status"].upper()}
        return super().to_internal_value(data)


class CreateIntentIn(serializers.Serializer):
    order_id = serializers.UUIDField()


class VerifyPaymentIn(serializers.Serializer):
    payment_intent_id = serializers.CharField(max_length=255)
    order_id = serializers.UUIDField()


class CartItemIn(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    size = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    color = serializers.CharField(max_length=40, required=False, allow_blank=True, default="")


class CartItemUpdateIn(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class OrderItemOut(serializers.ModelSerializer):
    product_id = serializers.UUIDField()

    class Meta:
        model = OrderItem
        fields = ["id", "product_id", "name", "price", "image", "quantity", "size", "color"]


class OrderOut(serializers.ModelSerializer):
    items = OrderItemOut(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id", "order_number", "shipping_address", "payment_method",
            "payment_status", "order_status", "subtotal", "shipping_cost", "tax",
            "total", "stripe_payment_id", "tracking_number", "items",
            "created_at", "paid_at", "shipped_at", "delivered_at", "cancelled_at",
        ]


class CartItemOut(serializers.ModelSerializer):
    product_id = serializers.UUIDField()
    name = serializers.CharField(source="product.name")
    price = serializers.DecimalField(source="product.price", max_digits=12, decimal_places=2)
    stock = serializers.IntegerField(source="product.stock")
    image = serializers.CharField(source="product.primary_image")

    class Meta:
        model = CartItem
        fields = ["id", "product_id", "name", "price", "stock", "image", "quantity", "size", "color"]


class CartOut(serializers.ModelSerializer):
    items = serializers.SerializerMethodField()

    class Meta:
        model = Cart
        fields = ["id", "items"]

    def get_items(self, cart):
        return CartItemOut(cart.items.select_related("product").order_by("created_at"), many=True).data


class CartSummaryOut(serializers.Serializer):
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2)
    item_count = serializers.IntegerField()
