from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import HTTPException, Request, status

from src.dashboard.schemas.common import utc_now
from src.dashboard.state import get_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    """Identity resolved from a validated bearer token."""

    user_id: str
    email: Optional[str]


def _parse_bearer_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


# PUBLIC_INTERFACE
def create_access_token(
    secret: str,
    user_id: str,
    email: Optional[str] = None,
    expires_in: timedelta = timedelta(hours=24),
    algorithm: str = "HS256",
) -> str:
    """Issue a signed access token carrying userId/email claims."""
    now = utc_now()
    claims = {"userId": user_id, "email": email, "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, secret, algorithm=algorithm)


# PUBLIC_INTERFACE
def decode_access_token(secret: str, token: str, algorithm: str = "HS256") -> AuthUser:
    """Validate signature and expiry; raises jwt.InvalidTokenError on any failure."""
    claims = jwt.decode(token, secret, algorithms=[algorithm])
    user_id = claims.get("userId")
    if not user_id:
        raise jwt.InvalidTokenError("token has no userId claim")
    return AuthUser(user_id=str(user_id), email=claims.get("email"))


# PUBLIC_INTERFACE
def require_user(request: Request) -> AuthUser:
    """
    FastAPI dependency guarding authenticated routers.

    - 401 when no bearer token is supplied
    - 403 when the token is malformed, expired or signed with another key
    """
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")

    cfg = get_state(request.app).config
    try:
        user = decode_access_token(cfg.jwt_secret, token, algorithm=cfg.jwt_algorithm)
    except jwt.InvalidTokenError as exc:
        logger.warning("Rejected bearer token path=%s reason=%s", request.url.path, type(exc).__name__)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired token") from exc

    request.state.user = user
    return user
