from datetime import datetime, timedelta

import bcrypt
from jose import JWTError, jwt

from tenancy.config import settings
from tenancy.core.exceptions import Unauthenticated


def encode_jwt(payload: dict, issued_at: datetime, ttl_seconds: int | None = None) -> str:
    """
    Sign a token payload with the shared SECRET_KEY.

    Args:
        payload: Claims to embed ('sub' is required by decode_jwt)
        issued_at: Naive UTC issue time, becomes 'iat'
        ttl_seconds: Lifetime; defaults to ACCESS_TOKEN_TTL_SECONDS

    Returns:
        Encoded JWT
    """
    ttl = ttl_seconds if ttl_seconds is not None else settings.ACCESS_TOKEN_TTL_SECONDS
    claims = {
        **payload,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=ttl),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_jwt(token: str) -> dict:
    """
    Decode and validate JWT token using shared SECRET_KEY.

    Args:
        token: JWT from the Authorization header or the session cookie

    Returns:
        Decoded token payload with 'sub' (uid), 'exp', 'iat' and any claims

    Raises:
        Unauthenticated: If token invalid, expired, or malformed
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise Unauthenticated(f"Invalid token: {str(e)}")

    # Validate expiration (jose checks the value, not its presence)
    if payload.get("exp") is None:
        raise Unauthenticated("Token missing expiration")

    if not payload.get("sub"):
        raise Unauthenticated("Token missing user identifier")

    return payload


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
