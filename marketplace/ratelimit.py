"""Rate limiter shared by the app factory and the routers."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from marketplace.config import settings

# Keyed by client IP address
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
    enabled=settings.rate_limit_enabled,
)
