"""
Stripe adapter. The rest of the shop talks to the payment processor only
through these functions, and only sees ``UpstreamFailure`` /
``SignatureInvalid`` from it.
"""

import logging
import uuid

import stripe
from django.conf import settings

from .errors import SignatureInvalid, UpstreamFailure
from .retry import retry

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


@retry(times=3, backoff=0.2, exceptions=TRANSIENT_ERRORS)
def _create_intent(**params):
    return stripe.PaymentIntent.create(api_key=settings.STRIPE_SECRET_KEY, **params)


@retry(times=3, backoff=0.2, exceptions=TRANSIENT_ERRORS)
def _retrieve_intent(intent_id):
    return stripe.PaymentIntent.retrieve(intent_id, api_key=settings.STRIPE_SECRET_KEY)


def create_payment_intent(amount_minor: int, currency: str = None, metadata: dict = None):
    """Returns the processor's intent; read ``["id"]`` and ``["client_secret"]``."""
    currency = currency or settings.STRIPE_CURRENCY
    try:
        return _create_intent(
            amount=amount_minor,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata=metadata or {},
            # one key for every retry of this call, so a retried create can't double up
            idempotency_key=uuid.uuid4().hex,
        )
    except stripe.StripeError as e:
        logger.error("payment intent creation failed: %s", e)
        raise UpstreamFailure(f"Payment intent creation failed: {e}") from e


def retrieve_payment_intent(intent_id: str):
    try:
        return _retrieve_intent(intent_id)
    except stripe.StripeError as e:
        logger.error("payment intent retrieval failed: %s: %s", intent_id, e)
        raise UpstreamFailure(f"Payment intent retrieval failed: {e}") from e


def construct_event(payload: bytes, signature: str):
    secret = settings.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise SignatureInvalid("Webhook secret is not configured")
    if not signature:
        raise SignatureInvalid("Missing Stripe-Signature header")
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError as e:
        raise SignatureInvalid(f"Invalid payload: {e}") from e
    except stripe.SignatureVerificationError as e:
        raise SignatureInvalid(f"Signature verification failed: {e}") from e
