from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger("cos.api")


class DomainError(APIException):
    """
    Base class for business-rule violations raised by the service layer.

    Subclasses set ``status_code``, ``default_detail`` and ``default_code``;
    views let them propagate and the handler below renders them.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request could not be processed."
    default_code = "domain_error"


def custom_exception_handler(exc, context):
    """
    Wrap DRF + Django exceptions into a consistent response format.

    Success responses (2xx) are not touched.
    Only errors come through here.
    """
    response = drf_exception_handler(exc, context)

    # If DRF handled it, wrap it
    if response is not None:
        body = {
            "success": False,
            "status_code": response.status_code,
            "errors": response.data,
        }
        if isinstance(exc, DomainError):
            body["code"] = exc.default_code
            logger.warning(
                f"Domain error {exc.default_code} ({response.status_code}): {exc.detail}"
            )
        headers = {
            key: response[key]
            for key in ("Retry-After", "WWW-Authenticate")
            if response.has_header(key)
        }
        return Response(body, status=response.status_code, headers=headers)

    # Unhandled exceptions -> 500
    logger.exception("Unhandled API exception", exc_info=exc)

    return Response(
        {
            "success": False,
            "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
            "errors": {"detail": "Internal server error."},
        },
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )

