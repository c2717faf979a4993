"""
Caller identity.

Every endpoint except the Benchling webhook needs a bearer ID token. The
token only establishes *who* is calling; whether they are an administrator
is looked up in UserProfile.
"""

import logging
from dataclasses import dataclass

import jwt
from django.conf import settings
from rest_framework.authentication import BaseAuthentication, get_authorization_header

from .exceptions import AuthorizationError
from .models import UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    uid: str
    is_admin: bool = False

    # DRF checks these on request.user
    is_authenticated = True
    is_anonymous = False


def verify_token(token):
    """
    Decode and verify an ID token. Returns {"uid": ...}.

    Raises:
        AuthorizationError: expired, malformed or wrongly signed token
    """
    options = {'require': ['exp']}
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_KEY,
            algorithms=settings.AUTH_JWT_ALGORITHMS,
            audience=settings.AUTH_JWT_AUDIENCE or None,
            issuer=settings.AUTH_JWT_ISSUER or None,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthorizationError('Token has expired.', code='TOKEN_EXPIRED')
    except jwt.InvalidTokenError as exc:
        logger.debug('Invalid token: %s', exc)
        raise AuthorizationError('Invalid authentication token.', code='INVALID_TOKEN')

    uid = payload.get('uid') or payload.get('user_id') or payload.get('sub')
    if not uid:
        raise AuthorizationError('Token carries no user id.', code='INVALID_TOKEN')
    return {'uid': str(uid)}


def caller_for_uid(uid):
    profile = UserProfile.objects.filter(uid=uid).only('is_admin').first()
    return Caller(uid=uid, is_admin=bool(profile and profile.is_admin))


class BearerTokenAuthentication(BaseAuthentication):
    """
    Accepts `Authorization: Bearer <token>` or the bare token.

    No header -> anonymous (views decide whether that is acceptable).
    """

    keyword = b'bearer'

    def authenticate(self, request):
        header = get_authorization_header(request).split()
        if not header:
            return None

        if header[0].lower() == self.keyword:
            if len(header) != 2:
                raise AuthorizationError('Malformed Authorization header.', code='INVALID_TOKEN')
            token = header[1]
        elif len(header) == 1:
            token = header[0]
        else:
            raise AuthorizationError('Malformed Authorization header.', code='INVALID_TOKEN')

        try:
            token = token.decode('ascii')
        except UnicodeDecodeError:
            raise AuthorizationError('Invalid authentication token.', code='INVALID_TOKEN')

        claims = verify_token(token)
        return caller_for_uid(claims['uid']), token

    def authenticate_header(self, request):
        return 'Bearer'


def require_caller(request):
    """The authenticated Caller, or 401."""
    user = getattr(request, 'user', None)
    if not isinstance(user, Caller):
        raise AuthorizationError('Not authorized.', code='NOT_AUTHENTICATED')
    return user


def require_admin(request):
    caller = require_caller(request)
    if not caller.is_admin:
        raise AuthorizationError('Not authorized.', code='ADMIN_REQUIRED')
    return caller
