"""JWT tokens for the GraphQL API."""
import logging
from datetime import datetime, timedelta, timezone

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


def _lifetime(token_type: str) -> timedelta:
    if token_type == REFRESH:
        return timedelta(days=settings.JWT_REFRESH_TOKEN_DAYS)
    return timedelta(hours=settings.JWT_ACCESS_TOKEN_HOURS)


def _encode(user, token_type: str, expires_delta: timedelta | None, **claims) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.pk),
        "type": token_type,
        "iat": issued_at,
        "exp": issued_at + (expires_delta or _lifetime(token_type)),
        **claims,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def create_access_token(user, expires_delta: timedelta | None = None) -> str:
    """Short-lived token sent as ``Authorization: Bearer <token>``."""
    return _encode(user, ACCESS, expires_delta, username=user.get_username())


def create_refresh_token(user, expires_delta: timedelta | None = None) -> str:
    return _encode(user, REFRESH, expires_delta)


def decode_token(token: str, expected_type: str | None = None) -> dict | None:
    """Decoded payload, or None if the token is invalid, expired or of another type."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.debug("Rejected token: %s", e)
        return None
    if expected_type is not None and payload.get("type") != expected_type:
        return None
    return payload


def get_user_from_token(token: str, expected_type: str = ACCESS):
    """Active user the token was issued to, or None."""
    payload = decode_token(token, expected_type)
    if payload is None:
        return None

    User = get_user_model()
    try:
        return User.objects.get(pk=int(payload["sub"]), is_active=True)
    except (KeyError, ValueError, User.DoesNotExist):
        return None
