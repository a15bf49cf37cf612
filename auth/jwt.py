"""
Bearer-token creation and verification.

Tokens are signed payloads (see ``auth.signing``) carrying ``user_id``.
Secret: ``config.jwt_secret`` (env var: ``JWT_SECRET``).  Account
registration lives outside this service; it only needs to verify who is
calling.
"""

from __future__ import annotations

from fastapi import HTTPException, status

from auth.signing import InvalidSignature, sign, verify
from config.settings import config


def create_token(user_id: str) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    return sign({"user_id": user_id}, config.jwt_secret, config.jwt_expiry_seconds)


def verify_token(token: str) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``HTTPException(401)`` on invalid or expired tokens.
    """
    try:
        payload = verify(token, config.jwt_secret)
        user_id = payload.get("user_id")
        if not user_id or not isinstance(user_id, str):
            raise InvalidSignature("no user_id")
        return user_id
    except InvalidSignature as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {exc}",
        ) from exc
