import logging
from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings
from django.utils import timezone
from jose import JWTError, jwt
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """
    The caller of a request, decoded once from its bearer token.

    Becomes ``request.user`` for authenticated requests. Services only ever
    receive ``user_id``.
    """

    user_id: int

    @property
    def is_authenticated(self) -> bool:
        return True


def _secret() -> str:
    return getattr(settings, "JWT_SECRET", "secret-key")


def _algorithm() -> str:
    return getattr(settings, "JWT_ALGORITHM", "HS256")


def issue_token(user_id: int) -> str:
    """Sign a token identifying ``user_id``, valid for ``JWT_EXPIRY_HOURS``."""
    expires_at = timezone.now() + timedelta(
        hours=getattr(settings, "JWT_EXPIRY_HOURS", 72)
    )
    return jwt.encode(
        {"user_id": user_id, "exp": expires_at},
        _secret(),
        algorithm=_algorithm(),
    )


def decode_token(token: str) -> AuthenticatedIdentity:
    """
    Verify ``token`` and return the identity it carries.

    Raises:
        JWTError: If the signature, expiry or claims are invalid.
    """
    claims = jwt.decode(token, _secret(), algorithms=[_algorithm()])
    user_id = claims.get("user_id")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise JWTError("Token does not carry a user id.")
    return AuthenticatedIdentity(user_id=user_id)


class JWTAuthentication(BaseAuthentication):
    """
    ``Authorization: Bearer <token>`` authentication.

    Requests without the header stay anonymous; a present but invalid token
    is rejected with 401.
    """

    keyword = "Bearer"

    def authenticate(self, request):
        header = get_authorization_header(request).split()
        if not header or header[0].lower() != self.keyword.lower().encode():
            return None

        if len(header) != 2:
            raise AuthenticationFailed("Invalid token header.")

        try:
            token = header[1].decode()
            identity = decode_token(token)
        except (UnicodeError, JWTError) as exc:
            logger.warning("Rejected bearer token: %s", str(exc))
            raise AuthenticationFailed("Invalid or expired token.")

        return identity, token

    def authenticate_header(self, request):
        return self.keyword
