import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from app.core.config import settings

logger = logging.getLogger(__name__)

IS_TESTING = settings.environment == "testing"
storage_uri = settings.redis_url if not IS_TESTING else "memory://"

# Limits live in Redis so every worker process shares the same window
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=storage_uri,
    strategy="fixed-window",
    enabled=not IS_TESTING,
)

# Per-route limits
ORDER_CREATE_LIMIT = "10/minute"
PAYMENT_LIMIT = "20/minute"


def init_limiter_error_handlers(app):
    """
    Registers a JSON error handler for rate-limited requests.
    """
    from fastapi import Request
    from fastapi.responses import JSONResponse
    from slowapi.errors import RateLimitExceeded

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
        ip = request.client.host if request.client else "unknown"
        logger.warning(f"Rate limit exceeded by IP: {ip}")
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please slow down."},
        )
