"""
verify.py
---------
Purpose:
    Operator authentication for the trigger endpoints.

Notes:
    - Verifies Supabase JWTs against the project JWKS (ES256).
    - The JWKS client is created on first use so the worker never needs it.
    - Operators are users with the 'admin' role in user_roles.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from push_engine.config import settings
from push_engine.db.helpers import fetch_one

SUPABASE_AUDIENCE = "authenticated"

_jwk_client: PyJWKClient | None = None
_security = HTTPBearer()


def _get_jwk_client() -> PyJWKClient:
    global _jwk_client
    if _jwk_client is None:
        url = settings.jwks_url()
        if not url:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Operator authentication is not configured",
            )
        _jwk_client = PyJWKClient(url)
    return _jwk_client


def verify_jwt(token: str) -> dict:
    client = _get_jwk_client()
    try:
        signing_key = client.get_signing_key_from_jwt(token)
        decoded = jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            audience=SUPABASE_AUDIENCE,
            options={"verify_exp": True},
        )
        return decoded
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def is_admin(user_id: str) -> bool:
    row = await fetch_one(
        "SELECT 1 AS is_admin FROM user_roles WHERE user_id = %s AND role = 'admin' LIMIT 1",
        (user_id,),
    )
    return row is not None


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)


async def operator_auth_dependency(claims: dict = Depends(auth_dependency)) -> dict:
    user_id = claims.get("sub")
    if user_id and await is_admin(user_id):
        return claims

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Operator privileges required",
    )
