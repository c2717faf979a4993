"""
Benchling webhook signature verification.

Signature = hex HMAC-SHA256 of the raw request body keyed with
BENCHLING_WEBHOOK_SECRET, sent in X-Benchling-Signature, optionally as
"sha256=<hex>". Verification is skipped while no secret is configured.
"""

import hashlib
import hmac
import logging

from django.conf import settings

from .exceptions import AuthorizationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'X-Benchling-Signature'
_SIGNATURE_PREFIX = 'sha256='


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str | None = None) -> None:
    """
    Raises:
        AuthorizationError: a secret is configured and the signature is missing or wrong
    """
    secret = settings.BENCHLING_WEBHOOK_SECRET if secret is None else secret
    if not secret:
        return

    if not signature:
        logger.warning('Benchling webhook rejected: missing %s header', SIGNATURE_HEADER)
        raise AuthorizationError('Missing webhook signature.', code='INVALID_SIGNATURE')

    signature = signature.strip()
    if signature.lower().startswith(_SIGNATURE_PREFIX):
        signature = signature[len(_SIGNATURE_PREFIX):]

    if not hmac.compare_digest(compute_signature(body, secret), signature.lower()):
        logger.warning('Benchling webhook rejected: signature mismatch')
        raise AuthorizationError('Invalid webhook signature.', code='INVALID_SIGNATURE')
