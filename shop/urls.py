from django.urls import path

from . import views

urlpatterns = [
    path("cart/", views.cart_view, name="cart"),
    path("cart/add/", views.cart_add_view, name="cart-add"),
    path("cart/items/<uuid:item_id>/", views.cart_item_view, name="cart-item"),
    path("cart/clear/", views.cart_clear_view, name="cart-clear"),
    path("orders/", views.orders_view, name="orders"),
    path("orders/<uuid:order_id>/", views.order_detail_view, name="order-detail"),
    path("orders/<uuid:order_id>/cancel/", views.order_cancel_view, name="order-cancel"),
    path("admin/orders/<uuid:order_id>/status/", views.order_status_view, name="order-status"),
    path("payment/create-intent/", views.create_intent_view, name="payment-create-intent"),
    path("payment/verify/", views.verify_payment_view, name="payment-verify"),
    path("payment/webhook/", views.stripe_webhook_view, name="payment-webhook"),
]
