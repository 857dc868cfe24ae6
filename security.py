"""Password hashing and signed token helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

import bcrypt
from jose import JWTError, jwt

from config import AuthSettings
from errors import AuthenticationError, ValidationError

TokenType = Literal["access", "refresh"]

# bcrypt only looks at the first 72 bytes of the input.
MAX_PASSWORD_BYTES = 72


def _password_bytes(password: str) -> bytes:
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > MAX_PASSWORD_BYTES:
        raise ValidationError("Password is too long")
    return password_bytes


def hash_password(password: str, rounds: int) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed_password.encode("utf-8"))
    except (ValueError, ValidationError):
        return False


def _secret_for(settings: AuthSettings, token_type: TokenType) -> str:
    if token_type == "access":
        return settings.access_secret
    return settings.refresh_secret


def create_token(
    settings: AuthSettings,
    token_type: TokenType,
    user_id: int,
    email: str,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    now = now or datetime.now(timezone.utc)
    ttl = (
        settings.access_token_ttl
        if token_type == "access"
        else settings.refresh_token_ttl
    )
    expire = now + ttl
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "userId": user_id,
        "email": email,
        "type": token_type,
        "iat": now,
        "exp": expire,
        "jti": uuid4().hex,
    }
    token = jwt.encode(
        payload, _secret_for(settings, token_type), algorithm=settings.algorithm
    )
    return token, expire


def decode_token(
    settings: AuthSettings, token: str, token_type: TokenType
) -> dict[str, Any]:
    """Decode and check a token of the given type. Fails closed."""
    try:
        payload = jwt.decode(
            token, _secret_for(settings, token_type), algorithms=[settings.algorithm]
        )
    except (JWTError, AttributeError, TypeError, ValueError) as exc:
        raise AuthenticationError("Invalid or expired token") from exc
    if payload.get("type") != token_type:
        raise AuthenticationError("Invalid token type")
    if not isinstance(payload.get("userId"), int) or not payload.get("email"):
        raise AuthenticationError("Invalid token payload")
    return payload
