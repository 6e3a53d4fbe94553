import logging

from django.core.exceptions import PermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .errors import ShopError

logger = logging.getLogger(__name__)


def _log(exc, status_code, context):
    view = context.get("view")
    where = type(view).__name__ if view is not None else "-"
    if status_code >= 500:
        logger.error("%s failed: %s", where, exc)
    else:
        logger.warning("%s rejected (%s): %s", where, status_code, exc)


def api_exception_handler(exc, context):
    """DRF ``EXCEPTION_HANDLER``: one error body shape for every failure."""
    if isinstance(exc, ShopError):
        _log(exc, exc.status_code, context)
        body = {"success": False, "message": exc.message, "code": exc.code}
        body.update(exc.detail)
        return Response(body, status=exc.status_code)

    if isinstance(exc, exceptions.ValidationError):
        _log(exc, status.HTTP_400_BAD_REQUEST, context)
        return Response(
            {
                "success": False,
                "message": "Validation failed",
                "code": "validation_failed",
                "errors": exc.detail,
            },
            status=status.HTTP_400_BAD_REQUEST,
        )

    # convert Django's own errors up front so their DRF code is kept
    if isinstance(exc, Http404):
        exc = exceptions.NotFound(*exc.args)
    elif isinstance(exc, PermissionDenied):
        exc = exceptions.PermissionDenied(*exc.args)

    response = exception_handler(exc, context)
    if response is None:
        # unhandled: Django's 500 path takes over
        logger.exception("unhandled error in %s", context.get("view"))
        return None

    _log(exc, response.status_code, context)
    detail = response.data.get("detail", "") if isinstance(response.data, dict) else response.data
    response.data = {
        "success": False,
        "message": str(detail),
        "code": getattr(exc, "default_code", "error"),
    }
    return response
