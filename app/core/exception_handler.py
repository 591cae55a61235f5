"""
DRF exception handler rendering application errors.

Configured via REST_FRAMEWORK["EXCEPTION_HANDLER"]. Domain exceptions
raised from services become JSON bodies of the shape produced by
BaseApplicationError.to_dict() with the status the error class declares.
Anything else falls through to DRF's default handler (and to a 500 if DRF
does not know it either).
"""

from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def application_exception_handler(exc, context):
    if isinstance(exc, BaseApplicationError):
        view = context.get("view")
        log = logger.error if exc.http_status >= 500 else logger.info
        log(
            "Request failed with application error",
            extra={
                "error_code": exc.error_code,
                "http_status": exc.http_status,
                "view": view.__class__.__name__ if view else None,
            },
        )
        return Response(exc.to_dict(), status=exc.http_status)

    return exception_handler(exc, context)
