from __future__ import annotations

import time
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from archreview.config import settings


_bearer_scheme = HTTPBearer(auto_error=False)


def _auth_unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _auth_misconfigured(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


def issue_admin_token(subject: str, *, ttl_seconds: int = 24 * 60 * 60, is_admin: bool = True) -> str:
    secret = str(settings.admin_token_secret or "").strip()
    if not secret:
        raise _auth_misconfigured("Admin auth is enabled but ADMIN_TOKEN_SECRET is not configured.")
    now = int(time.time())
    claims = {"sub": subject, "is_admin": is_admin, "iat": now, "exp": now + ttl_seconds}
    return jwt.encode(claims, secret, algorithm=settings.admin_token_algorithm)


def decode_admin_token(token: str) -> dict[str, Any]:
    secret = str(settings.admin_token_secret or "").strip()
    if not secret:
        raise _auth_misconfigured("Admin auth is enabled but ADMIN_TOKEN_SECRET is not configured.")

    try:
        claims = jwt.decode(token, secret, algorithms=[settings.admin_token_algorithm])
    except JWTError as exc:
        raise _auth_unauthorized(f"Invalid or expired admin token: {exc}") from exc

    if not str(claims.get("sub") or "").strip():
        raise _auth_unauthorized("Admin token does not identify a user.")
    if claims.get("is_admin") is not True:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator privileges required.")
    return claims


def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict[str, Any] | None:
    if not settings.admin_auth_enabled:
        return None

    if credentials is None:
        raise _auth_unauthorized("Missing bearer token.")
    if credentials.scheme.lower() != "bearer":
        raise _auth_unauthorized("Unsupported authorization scheme.")

    token = credentials.credentials.strip()
    if not token:
        raise _auth_unauthorized("Missing bearer token.")

    return decode_admin_token(token)
