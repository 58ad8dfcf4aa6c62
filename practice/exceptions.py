import logging

import sentry_sdk
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

# Service-layer errors and the HTTP status they map to at the API seam.
DOMAIN_ERRORS = (
    (PermissionError, status.HTTP_403_FORBIDDEN, 'forbidden'),
    (LookupError, status.HTTP_404_NOT_FOUND, 'not_found'),
    (ValueError, status.HTTP_400_BAD_REQUEST, 'invalid'),
)


def _error(code, message, status_code):
    return Response({'ok': False, 'error': {'code': code, 'message': message}}, status=status_code)


def _code_for(exc: APIException) -> str:
    if isinstance(exc, ValidationError):
        return 'validation_error'
    codes = exc.get_codes()
    if isinstance(codes, str):
        return codes
    if isinstance(codes, dict):
        code = codes.get('code') or codes.get('detail')
        if isinstance(code, str):
            return code
    return exc.default_code


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        for exc_type, status_code, code in DOMAIN_ERRORS:
            if isinstance(exc, exc_type):
                return _error(code, str(exc), status_code)
        logger.exception('unhandled API error in %s', context.get('view').__class__.__name__, exc_info=exc)
        sentry_sdk.capture_exception(exc)
        return _error('server_error', 'Internal server error', status.HTTP_500_INTERNAL_SERVER_ERROR)
    # normalize response
    if isinstance(resp.data, dict) and not isinstance(exc, ValidationError):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    out = _error(_code_for(exc), detail, resp.status_code)
    for header in ('WWW-Authenticate', 'Retry-After'):
        if header in resp:
            out[header] = resp[header]
    return out
