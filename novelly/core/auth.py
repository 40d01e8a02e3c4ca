"""
Authentication helpers for verifying Supabase JWTs locally.

The app keeps no user table of its own: the token's `sub` claim is the user id
that library, history and feed rows are keyed by.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt

from novelly.core.config import settings

logger = logging.getLogger(__name__)


def _unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _extract_bearer_token(request: Request) -> str:
    """
    Extract 'Bearer <token>' from Authorization header.
    """
    auth = request.headers.get("Authorization")
    if not auth:
        raise _unauthorized("Missing Authorization header")

    parts = auth.split()
    if len(parts) != 2:
        raise _unauthorized("Invalid Authorization header format. Expected 'Bearer <token>'")

    scheme, token = parts
    if scheme.lower() != "bearer":
        raise _unauthorized("Invalid auth scheme. Expected 'Bearer'")

    return token


def decode_supabase_jwt(token: str) -> Dict[str, Any]:
    """
    Decode and validate a Supabase access token (HS256, issuer and audience checked).
    """
    try:
        settings.require_supabase()
    except RuntimeError as e:
        logger.error(f"Supabase configuration missing: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Supabase environment variables not configured. Authentication is not available.",
        )

    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUD,
            issuer=settings.jwt_issuer,
        )
    except JWTError as e:
        logger.warning(f"JWT validation failed: {e}")
        raise _unauthorized("Token validation failed")


async def get_current_user(request: Request) -> Dict[str, Any]:
    """
    FastAPI dependency: the authenticated user as {"id", "email"}.
    """
    token = _extract_bearer_token(request)
    payload = decode_supabase_jwt(token)

    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("Token missing subject (sub)")

    return {"id": str(user_id), "email": payload.get("email") or ""}
