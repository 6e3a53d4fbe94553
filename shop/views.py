import hashlib
import json

from django.db import transaction
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from . import carts, payments, services
from .errors import IdempotencyConflict
from .models import IdempotencyKey
from .serializers import (
    CartItemIn,
    CartItemUpdateIn,
    CartOut,
    CartSummaryOut,
    CreateIntentIn,
    OrderCreateIn,
    OrderOut,
    OrderStatusIn,
    VerifyPaymentIn,
)


def _ok(data, code=status.HTTP_200_OK, message=None, headers=None):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return Response(body, status=code, headers=headers)


def _cart_payload(cart):
    return {"cart": CartOut(cart).data, "summary": CartSummaryOut(carts.cart_summary(cart)).data}


# ---------------------------------------------------------------- cart

@api_view(["GET"])
@permission_classes([IsAuthenticated])
def cart_view(request):
    return _ok(_cart_payload(carts.get_cart(request.user)))


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def cart_add_view(request):
    ser = CartItemIn(data=request.data)
    ser.is_valid(raise_exception=True)
    cart = carts.add_to_cart(user=request.user, **ser.validated_data)
    return _ok(_cart_payload(cart), message="Item added to cart")


@api_view(["PUT", "DELETE"])
@permission_classes([IsAuthenticated])
def cart_item_view(request, item_id):
    if request.method == "DELETE":
        carts.remove_cart_item(user=request.user, item_id=item_id)
        return _ok({}, message="Item removed from cart")

    ser = CartItemUpdateIn(data=request.data)
    ser.is_valid(raise_exception=True)
    carts.update_cart_item(user=request.user, item_id=item_id, **ser.validated_data)
    return _ok(_cart_payload(carts.get_cart(request.user)), message="Cart updated")


@api_view(["DELETE"])
@permission_classes([IsAuthenticated])
def cart_clear_view(request):
    carts.clear_cart(request.user)
    return _ok({}, message="Cart cleared")


# ---------------------------------------------------------------- orders

def _place_order(user, data):
    order = services.create_order(
        user=user,
        items=[dict(it) for it in data["items"]],
        shipping_address=dict(data["shipping_address"]),
        payment_method=data["payment_method"],
    )
    return order, {"order": OrderOut(order).data}


@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def orders_view(request):
    if request.method == "GET":
        orders = services.list_orders(request.user)
        return _ok({"orders": OrderOut(orders, many=True).data})

    ser = OrderCreateIn(data=request.data)
    ser.is_valid(raise_exception=True)

    idem = request.headers.get("Idempotency-Key")
    if not idem:
        order, payload = _place_order(request.user, ser.validated_data)
        return _ok(payload, status.HTTP_201_CREATED, "Order created successfully",
                   headers={"Location": f"/api/orders/{order.id}/"})

    body_hash = hashlib.sha256(
        json.dumps(ser.validated_data, sort_keys=True, default=str).encode()
    ).hexdigest()
    with transaction.atomic():
        rec, created = IdempotencyKey.objects.select_for_update().get_or_create(
            key=idem, user=request.user,
            defaults={"request_hash": body_hash, "status_code": 0, "response_body": {}},
        )
        if not created and rec.request_hash != body_hash:
            raise IdempotencyConflict("Idempotency-Key was already used with a different request")
        if not created and rec.status_code:
            return Response(rec.response_body, status=rec.status_code,
                            headers={"Location": f"/api/orders/{rec.response_body['data']['order']['id']}/"})

        order, payload = _place_order(request.user, ser.validated_data)
        body = {"success": True, "message": "Order created successfully", "data": payload}
        # round-trip through JSON so the stored body matches what the client saw
        rec.response_body = json.loads(json.dumps(body, default=str))
        rec.status_code = status.HTTP_201_CREATED
        rec.save(update_fields=["response_body", "status_code"])

    return Response(body, status=status.HTTP_201_CREATED,
                    headers={"Location": f"/api/orders/{order.id}/"})


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def order_detail_view(request, order_id):
    order = services.get_order(user=request.user, order_id=order_id)
    return _ok({"order": OrderOut(order).data})


@api_view(["PUT"])
@permission_classes([IsAuthenticated])
def order_cancel_view(request, order_id):
    order = services.cancel_order(user=request.user, order_id=order_id)
    return _ok({"order": OrderOut(order).data}, message="Order cancelled successfully")


@api_view(["PUT"])
@permission_classes([IsAdminUser])
def order_status_view(request, order_id):
    ser = OrderStatusIn(data=request.data)
    ser.is_valid(raise_exception=True)
    order = services.update_order_status(order_id=order_id, **ser.validated_data)
    return _ok({"order": OrderOut(order).data}, message="Order status updated")


# ---------------------------------------------------------------- payment

@api_view(["POST"])
@permission_classes([IsAuthenticated])
def create_intent_view(request):
    ser = CreateIntentIn(data=request.data)
    ser.is_valid(raise_exception=True)
    intent = payments.create_intent(user=request.user, **ser.validated_data)
    return _ok({"clientSecret": intent["client_secret"],
                "paymentIntentId": intent["payment_intent_id"]})


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def verify_payment_view(request):
    ser = VerifyPaymentIn(data=request.data)
    ser.is_valid(raise_exception=True)
    result = payments.verify_payment(user=request.user, **ser.validated_data)

    if result.paid:
        return _ok({"order": OrderOut(result.order).data}, message="Payment verified successfully")
    if result.pending:
        return _ok({"status": result.status}, status.HTTP_202_ACCEPTED, "Payment is still in progress")
    return Response(
        {"success": False, "message": "Payment verification failed", "status": result.status},
        status=status.HTTP_400_BAD_REQUEST,
    )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def stripe_webhook_view(request):
    # raw bytes: the signature covers the exact payload
    payments.handle_webhook(request.body, request.headers.get("Stripe-Signature", ""))
    return Response({"received": True})
