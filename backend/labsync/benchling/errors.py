"""
Turn requests failures into classified ExternalSystemError instances.

Kinds: DNS_ERROR, AUTH_ERROR, PERMISSION_ERROR, NOT_FOUND_ERROR, UNKNOWN_ERROR.
"""

import requests

from ..exceptions import ExternalSystemError

_DNS_MARKERS = (
    'NameResolutionError',
    'getaddrinfo',
    'Name or service not known',
    'nodename nor servname',
    'ENOTFOUND',
)

# Benchling answers 404 with these user messages when the API key is bad
_SIGN_IN_MARKERS = ('signing in', 'Resource not found')


def _user_message(response):
    try:
        body = response.json()
    except ValueError:
        return ''
    error = body.get('error') if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get('userMessage') or error.get('message') or ''
    return (body.get('userMessage') or '') if isinstance(body, dict) else ''


def classify_external_error(exc):
    """Map a requests exception to an ExternalSystemError with a tailored message."""
    response = getattr(exc, 'response', None)
    status = response.status_code if response is not None else None

    if status is None:
        if isinstance(exc, requests.ConnectionError) and any(m in str(exc) for m in _DNS_MARKERS):
            return ExternalSystemError(
                'Cannot connect to Benchling API. Please check your API URL configuration.',
                code='DNS_ERROR',
            )
        if isinstance(exc, requests.Timeout):
            return ExternalSystemError('Benchling API did not respond in time.', code='UNKNOWN_ERROR')
        return ExternalSystemError(f'Benchling request failed: {exc}', code='UNKNOWN_ERROR')

    if status == 401:
        return ExternalSystemError(
            'Authentication failed. Please check your Benchling API key.',
            code='AUTH_ERROR', status_code=status,
        )
    if status == 403:
        return ExternalSystemError(
            'Access denied. Please check your Benchling API permissions.',
            code='PERMISSION_ERROR', status_code=status,
        )
    if status == 404:
        user_message = _user_message(response)
        if any(m in user_message for m in _SIGN_IN_MARKERS):
            return ExternalSystemError(
                'Authentication failed or API key invalid. Please verify your Benchling API key '
                'is correct and has proper permissions.',
                code='AUTH_ERROR', status_code=status,
            )
        return ExternalSystemError(
            'Benchling schema or registry not found. Please check your schema and registry IDs.',
            code='NOT_FOUND_ERROR', status_code=status,
        )
    return ExternalSystemError(
        f'Benchling request failed with status {status}.',
        code='UNKNOWN_ERROR', status_code=status, detail={'user_message': _user_message(response)},
    )
