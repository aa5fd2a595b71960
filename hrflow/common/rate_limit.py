"""Rate limiting configuration using slowapi.

A module-level Limiter shared by the routers (``@limiter.limit``) and wired
into the FastAPI app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Write endpoints that create records carry a tighter per-route limit.
APPLY_RATE_LIMIT = "20/minute"
CHECK_IN_RATE_LIMIT = "10/minute"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
)
