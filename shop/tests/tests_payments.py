import pytest
import stripe

from shop import payments, services
from shop.errors import InvalidState, NotFound, SignatureInvalid, UpstreamFailure
from shop.models import Order, OrderStatus, PaymentStatus

from .conftest import intent_event, sign_payload

pytestmark = pytest.mark.django_db(transaction=True)


@pytest.fixture
def order(user, address, make_product):
    p = make_product(price="1200.00", stock=5)
    return services.create_order(
        user=user,
        items=[{"product_id": p.pk, "quantity": 1}],
        shipping_address=address,
        payment_method="CARD",
    )


@pytest.fixture
def fake_stripe(monkeypatch):
    """Stand-in for the processor's PaymentIntent API."""
    calls = {"create": [], "retrieve": []}
    state = {"status": "succeeded"}

    def create(**params):
        calls["create"].append(params)
        return {"id": "pi_test_123", "client_secret": "pi_test_123_secret_abc"}

    def retrieve(intent_id, **params):
        calls["retrieve"].append(intent_id)
        return {"id": intent_id, "status": state["status"]}

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)
    monkeypatch.setattr("shop.retry.time.sleep", lambda s: None)
    return calls, state


def _with_intent(user, order):
    payments.create_intent(user=user, order_id=order.pk)
    order.refresh_from_db()
    return order


def test_create_intent_charges_total_in_minor_units(user, order, fake_stripe):
    calls, _ = fake_stripe
    result = payments.create_intent(user=user, order_id=order.pk)

    assert result == {"client_secret": "pi_test_123_secret_abc", "payment_intent_id": "pi_test_123"}
    params = calls["create"][0]
    assert params["amount"] == 141600
    assert params["currency"] == "inr"
    assert params["metadata"]["order_number"] == order.order_number
    order.refresh_from_db()
    assert order.stripe_payment_id == "pi_test_123"


def test_create_intent_rejects_paid_and_cancelled(user, order, fake_stripe):
    Order.objects.filter(pk=order.pk).update(payment_status=PaymentStatus.PAID)
    with pytest.raises(InvalidState, match="already paid"):
        payments.create_intent(user=user, order_id=order.pk)

    Order.objects.filter(pk=order.pk).update(payment_status=PaymentStatus.PENDING,
                                             order_status=OrderStatus.CANCELLED)
    with pytest.raises(InvalidState):
        payments.create_intent(user=user, order_id=order.pk)
    assert fake_stripe[0]["create"] == []


def test_create_intent_for_foreign_order(other_user, order, fake_stripe):
    with pytest.raises(NotFound):
        payments.create_intent(user=other_user, order_id=order.pk)


def test_verify_succeeded_settles(user, order, fake_stripe):
    order = _with_intent(user, order)
    result = payments.verify_payment(user=user, payment_intent_id="pi_test_123", order_id=order.pk)

    assert result.paid
    assert result.order.payment_status == PaymentStatus.PAID
    assert result.order.order_status == OrderStatus.PROCESSING
    assert result.order.paid_at is not None


@pytest.mark.parametrize("intent_status", ["processing", "requires_action"])
def test_verify_in_flight_leaves_order_alone(intent_status, user, order, fake_stripe):
    fake_stripe[1]["status"] = intent_status
    order = _with_intent(user, order)
    result = payments.verify_payment(user=user, payment_intent_id="pi_test_123", order_id=order.pk)

    assert result.pending and not result.paid
    order.refresh_from_db()
    assert (order.payment_status, order.order_status) == (PaymentStatus.PENDING, OrderStatus.PENDING)


def test_verify_failed_status_does_not_mutate(user, order, fake_stripe):
    fake_stripe[1]["status"] = "requires_payment_method"
    order = _with_intent(user, order)
    result = payments.verify_payment(user=user, payment_intent_id="pi_test_123", order_id=order.pk)

    assert not result.paid and not result.pending
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PENDING


def test_verify_rejects_intent_of_another_order(user, order, fake_stripe):
    _with_intent(user, order)
    with pytest.raises(InvalidState):
        payments.verify_payment(user=user, payment_intent_id="pi_someone_else", order_id=order.pk)
    assert fake_stripe[0]["retrieve"] == []


def test_settle_is_idempotent(order):
    assert payments.settle_payment(order.pk) is True
    order.refresh_from_db()
    first_paid_at = order.paid_at

    assert payments.settle_payment(order.pk) is False
    order.refresh_from_db()
    assert order.paid_at == first_paid_at
    assert order.payment_status == PaymentStatus.PAID


def test_settle_does_not_revive_cancelled_order(user, order):
    services.cancel_order(user=user, order_id=order.pk)
    payments.settle_payment(order.pk)
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PAID
    assert order.order_status == OrderStatus.CANCELLED


def test_webhook_succeeded_twice_settles_once(user, order, fake_stripe):
    order = _with_intent(user, order)
    payload = intent_event("payment_intent.succeeded", "pi_test_123")

    assert payments.handle_webhook(payload, sign_payload(payload)) == "payment_intent.succeeded"
    order.refresh_from_db()
    paid_at = order.paid_at
    assert (order.payment_status, order.order_status) == (PaymentStatus.PAID, OrderStatus.PROCESSING)

    payments.handle_webhook(payload, sign_payload(payload))
    order.refresh_from_db()
    assert order.paid_at == paid_at


def test_verify_after_webhook_is_harmless(user, order, fake_stripe):
    order = _with_intent(user, order)
    payload = intent_event("payment_intent.succeeded", "pi_test_123")
    payments.handle_webhook(payload, sign_payload(payload))
    order.refresh_from_db()
    paid_at = order.paid_at

    result = payments.verify_payment(user=user, payment_intent_id="pi_test_123", order_id=order.pk)
    assert result.paid
    assert result.order.paid_at == paid_at


def test_webhook_bad_signature_touches_nothing(user, order, fake_stripe):
    order = _with_intent(user, order)
    payload = intent_event("payment_intent.succeeded", "pi_test_123")

    with pytest.raises(SignatureInvalid):
        payments.handle_webhook(payload, sign_payload(payload, secret="whsec_forged"))
    with pytest.raises(SignatureInvalid):
        payments.handle_webhook(payload, "")
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PENDING


def test_webhook_rejected_when_secret_unset(settings, user, order, fake_stripe):
    settings.STRIPE_WEBHOOK_SECRET = ""
    order = _with_intent(user, order)
    payload = intent_event("payment_intent.succeeded", "pi_test_123")
    with pytest.raises(SignatureInvalid):
        payments.handle_webhook(payload, sign_payload(payload, secret=""))


def test_webhook_failed_marks_failed_but_never_unpays(user, order, fake_stripe):
    order = _with_intent(user, order)
    failed = intent_event("payment_intent.payment_failed", "pi_test_123", status="requires_payment_method")

    payments.handle_webhook(failed, sign_payload(failed))
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.FAILED

    payments.settle_payment(order.pk)
    payments.handle_webhook(failed, sign_payload(failed))
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PAID


def test_webhook_unknown_intent_and_type_are_acknowledged(order):
    unknown = intent_event("payment_intent.succeeded", "pi_nobody")
    assert payments.handle_webhook(unknown, sign_payload(unknown)) == "payment_intent.succeeded"

    other = intent_event("payment_intent.created", "pi_nobody")
    assert payments.handle_webhook(other, sign_payload(other)) == "payment_intent.created"
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PENDING


def test_transient_processor_errors_are_retried(user, order, fake_stripe, monkeypatch):
    attempts = []

    def flaky(**params):
        attempts.append(params["idempotency_key"])
        if len(attempts) < 3:
            raise stripe.APIConnectionError("network blip")
        return {"id": "pi_retry", "client_secret": "pi_retry_secret"}

    monkeypatch.setattr(stripe.PaymentIntent, "create", flaky)
    result = payments.create_intent(user=user, order_id=order.pk)

    assert result["payment_intent_id"] == "pi_retry"
    assert len(attempts) == 3
    assert len(set(attempts)) == 1  # same idempotency key on every attempt


def test_processor_failure_surfaces_as_upstream(user, order, fake_stripe, monkeypatch):
    def down(**params):
        raise stripe.APIConnectionError("unreachable")

    monkeypatch.setattr(stripe.PaymentIntent, "create", down)
    with pytest.raises(UpstreamFailure):
        payments.create_intent(user=user, order_id=order.pk)
    order.refresh_from_db()
    assert order.stripe_payment_id is None
