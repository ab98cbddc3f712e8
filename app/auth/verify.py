"""
verify.py
---------
Purpose:
    Service-role authentication for automation and outbox endpoints.

Notes:
    - Callers are schedulers, database webhooks and the admin backend, all
      holding the Supabase service role.
    - Accepts the raw service-role key, or an HS256 JWT signed with the
      project JWT secret whose ``role`` claim is ``service_role``.
    - Provides `require_service_role` for protected routers.
"""

import hmac

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings

SERVICE_ROLE = "service_role"

_security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_service_token(token: str) -> dict:
    service_key = settings.SUPABASE_SERVICE_ROLE_KEY
    if service_key and hmac.compare_digest(token.encode(), service_key.encode()):
        return {"role": SERVICE_ROLE}

    if not settings.SUPABASE_JWT_SECRET:
        raise _unauthorized("Invalid service credentials")

    try:
        decoded = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False, "verify_exp": True},
        )
    except jwt.PyJWTError as e:
        raise _unauthorized(f"Invalid authentication token: {e}") from e

    if decoded.get("role") != SERVICE_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Service role required",
        )
    return decoded


def require_service_role(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing bearer token")
    return verify_service_token(credentials.credentials)
