"""Security helpers for room password hashing and token management."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from fastapi import HTTPException, status
from passlib.context import CryptContext

from app.config import get_settings

settings = get_settings()

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class TokenSubjectError(jwt.InvalidTokenError):
    """Raised when a valid JWT does not name a numeric user id."""


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain room password against its stored hash."""

    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognised hash format in the database.
        return False


def get_password_hash(password: str) -> str:
    """Hash a room password for storing in the database."""

    return pwd_context.hash(password)


def create_access_token(data: Dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT access token with an expiration time."""

    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta if expires_delta is not None else timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token_subject(token: str) -> int:
    """Return the user id carried by ``token``.

    Raises :class:`jwt.InvalidTokenError` (or a subclass) for expired, forged
    or malformed tokens.
    """

    payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    sub = payload.get("sub")
    if sub is None or isinstance(sub, bool):
        raise TokenSubjectError("Token has no subject")
    try:
        return int(sub)
    except (TypeError, ValueError):
        raise TokenSubjectError("Token subject is not a user id") from None


def decode_access_token(token: str) -> int:
    """HTTP flavour of :func:`decode_token_subject` raising 401 errors."""

    try:
        return decode_token_subject(token)
    except jwt.ExpiredSignatureError as exc:  # pragma: no cover - simple error mapping
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials") from exc
