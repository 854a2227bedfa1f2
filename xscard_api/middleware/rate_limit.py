"""Rate limiting middleware using slowapi.

Default limits:
- Global: 100 req/min per IP
- Read endpoints: 60 req/min
- Write endpoints (registrations, plan changes, sync): 10 req/min
- RevenueCat webhook: 30 req/min
- Public version checks: 120 req/min (every app launch hits these)

RATE_LIMIT_ENABLED=false turns every limit off (local runs, tests).
"""

from __future__ import annotations

import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .. import config
from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger

logger = logging.getLogger("api.rate_limit")


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=["100/minute"],
    storage_uri="memory://",
    enabled=config.RATE_LIMIT_ENABLED,
)

rate_limit_read = limiter.limit("60/minute")
rate_limit_write = limiter.limit("10/minute")
rate_limit_webhook = limiter.limit("30/minute")
rate_limit_public = limiter.limit("120/minute")


def setup_rate_limiting(app):
    """Configure rate limiting on the FastAPI app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info("Rate limiting %s", "enabled" if limiter.enabled else "disabled")


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Log the violation and return 429 with Retry-After."""
    security_logger.rate_limit_exceeded(
        ip=get_client_ip(request),
        path=request.url.path,
        limit=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "Too many requests",
            "code": "RATE_LIMIT_EXCEEDED",
            "details": {"limit": str(exc.detail)},
        },
        headers={"Retry-After": "60"},
    )
