from decimal import Decimal

from shop.pricing import PricingPolicy, quote, to_minor_units


def test_single_item_above_threshold_ships_free():
    t = quote([(Decimal("1200"), 1)])
    assert t.subtotal == Decimal("1200.00")
    assert t.shipping_cost == Decimal("0.00")
    assert t.tax == Decimal("216.00")
    assert t.total == Decimal("1416.00")


def test_threshold_is_inclusive():
    t = quote([(Decimal("500"), 2)])
    assert t.subtotal == Decimal("1000.00")
    assert t.shipping_cost == Decimal("0.00")
    assert t.tax == Decimal("180.00")
    assert t.total == Decimal("1180.00")


def test_below_threshold_pays_flat_fee():
    t = quote([(Decimal("300"), 1), (Decimal("349.99"), 2)])
    assert t.subtotal == Decimal("999.98")
    assert t.shipping_cost == Decimal("50.00")
    assert t.tax == Decimal("180.00")  # 179.9964 rounded
    assert t.total == t.subtotal + t.shipping_cost + t.tax


def test_policy_comes_from_settings(settings):
    settings.SHOP_PRICING = {"FREE_SHIPPING_THRESHOLD": "500", "FLAT_SHIPPING_FEE": "40", "TAX_RATE": "0.05"}
    policy = PricingPolicy.from_settings()
    assert quote([(Decimal("499"), 1)], policy).shipping_cost == Decimal("40.00")
    assert quote([(Decimal("500"), 1)], policy).tax == Decimal("25.00")


def test_minor_units():
    assert to_minor_units(Decimal("1416.00")) == 141600
    assert to_minor_units(Decimal("404.01")) == 40401
