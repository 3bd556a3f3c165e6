"""
Shared rate limiting configuration.

Authenticated requests are limited per Firebase uid, anonymous ones per
client address. The limiter lives here so routers and the app can share it.
"""
from fastapi import Request
from jose import JWTError, jwt
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from motivai.core.config import settings


def user_or_address_key(request: Request) -> str:
    """Rate limit key: ``uid:<uid>`` from the bearer token, else the remote address."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            claims = {}
        uid = claims.get("sub") or claims.get("user_id")
        if uid:
            return f"uid:{uid}"
    return get_remote_address(request)


limiter = Limiter(key_func=user_or_address_key, default_limits=[settings.rate_limit_default])

rate_limit_handler = _rate_limit_exceeded_handler
rate_limit_exception = RateLimitExceeded
