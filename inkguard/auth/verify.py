"""
Bearer token verification for the public routes.

Tokens are issued by the identity provider and verified against its JWKS.
The caller's identity is the `sub` claim; any verification failure is a
401 with the same coarse message.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from inkguard.config import settings

SUPPORTED_ALGORITHMS = ["ES256", "RS256"]

_jwk_client = PyJWKClient(settings.AUTH_JWKS_URL, cache_keys=True)
_bearer = HTTPBearer()


def verify_jwt(token: str) -> dict:
    """Decode and validate a token, returning its claims."""
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=SUPPORTED_ALGORITHMS,
            audience=settings.AUTH_AUDIENCE,
            options={"require": ["exp", "sub"]},
        )
    except jwt.PyJWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    return claims


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_bearer)) -> dict:
    return verify_jwt(credentials.credentials)
