"""Domain exceptions raised by the shop services.

Views never catch these; ``shop.exceptions.api_exception_handler`` turns
them into JSON error responses.
"""


class ShopError(Exception):
    """Base exception for all shop errors."""

    status_code = 400
    code = "shop_error"

    def __init__(self, message, **detail):
        self.message = message
        self.detail = detail
        super().__init__(message)


class NotFound(ShopError):
    """A product, order or cart item doesn't exist (or isn't the caller's)."""

    status_code = 404
    code = "not_found"

    def __init__(self, resource, identifier):
        super().__init__(f"{resource} {identifier} not found", resource=resource, id=str(identifier))


class InsufficientStock(ShopError):
    code = "insufficient_stock"

    def __init__(self, product_id, name, requested, available):
        super().__init__(
            f"Insufficient stock for {name}",
            product_id=str(product_id),
            requested=requested,
            available=available,
        )


class InvalidState(ShopError):
    """The operation isn't allowed from the resource's current state."""

    code = "invalid_state"


class IdempotencyConflict(InvalidState):
    status_code = 409
    code = "idempotency_conflict"


class ValidationFailed(ShopError):
    code = "validation_failed"


class SignatureInvalid(ShopError):
    """Webhook payload could not be authenticated."""

    code = "signature_invalid"


class UpstreamFailure(ShopError):
    """The payment processor was unreachable or returned an error."""

    status_code = 502
    code = "upstream_failure"
