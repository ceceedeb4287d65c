"""Rate limiting configuration using slowapi."""

from fastapi import Request
from slowapi import Limiter

from app.core.device import get_client_ip


def get_ip_address(request: Request) -> str:
    """Client IP for rate limiting, honouring proxy headers."""
    return get_client_ip(request)


def get_bearer_or_ip(request: Request) -> str:
    """
    Key authenticated routes by bearer token so users behind one NAT do
    not share a budget. Falls back to the IP address.
    """
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return f"token:{credentials[-32:]}"
    return get_ip_address(request)


# Authenticated routes
limiter = Limiter(
    key_func=get_bearer_or_ip,
    default_limits=["1000/minute"],
)

# Public routes: sign-in, sign-up, codes and password reset (stricter)
public_limiter = Limiter(
    key_func=get_ip_address,
    default_limits=["100/minute"],
)
