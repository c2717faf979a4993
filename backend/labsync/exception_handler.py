"""
Unified exception handler, installed as REST_FRAMEWORK['EXCEPTION_HANDLER'].

Every error leaving the API has the same body, so a client only has to
check for a `type` field:

{
    "type":    "validation_error" | "authorization" | "block" | "not_ready" | "external",
    "code":    "TRANSITION_NOT_ALLOWED",
    "message": "Moving an order from reviewing to kit-sent is not permitted.",
    "detail":  { ... }  // optional
}

DRF's own APIExceptions (malformed JSON, wrong method, throttling) are
folded into the same shape. Anything else is left to Django's 500 handling.
"""

import logging

from django.http import JsonResponse
from rest_framework.exceptions import APIException, ValidationError as DRFValidationError

from .exceptions import BaseAppException, TaskNotReadyError

logger = logging.getLogger(__name__)

# seconds; the not-ready message asks admins to wait one minute
NOT_READY_RETRY_AFTER = 60


def _error_type(status):
    if status in (401, 403):
        return 'authorization'
    if status in (400, 415):
        return 'validation_error'
    return 'block'


def _respond(error_type, code, message, detail=None, status=500, headers=None):
    body = {'type': error_type, 'code': code, 'message': message}
    if detail is not None:
        body['detail'] = detail
    response = JsonResponse(body, status=status)
    for name, value in (headers or {}).items():
        response[name] = value
    return response


def unified_exception_handler(exc, context):
    if isinstance(exc, BaseAppException):
        if exc.http_status >= 500:
            logger.error('%s %s: %s', exc.type, exc.code, exc.message)
        headers = {'Retry-After': str(NOT_READY_RETRY_AFTER)} if isinstance(exc, TaskNotReadyError) else None
        return _respond(exc.type, exc.code, exc.message, exc.detail, exc.http_status, headers)

    if isinstance(exc, DRFValidationError):
        return _respond('validation_error', 'VALIDATION_ERROR', 'Request validation failed',
                        exc.detail, 400)

    if isinstance(exc, APIException):
        headers = {}
        if getattr(exc, 'wait', None):
            headers['Retry-After'] = str(int(exc.wait))
        return _respond(
            _error_type(exc.status_code),
            str(exc.default_code).upper(),
            str(exc.detail),
            status=exc.status_code,
            headers=headers,
        )

    return None
