import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.deps import get_redis
from app.core.exceptions import GatewayNotConfiguredError, StorefrontError
from app.core.limiter import init_limiter_error_handlers, limiter
from app.core.logging import request_id_var, setup_logging
from app.db.sessions import get_async_session
from app.services.gateway.razorpay import RazorpayGateway

# LOGGING
setup_logging()
logger = logging.getLogger(__name__)


# PAYMENT GATEWAY WIRING
@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        app.state.payment_gateway = RazorpayGateway.from_settings(settings)
        logger.info("Payment gateway ready.")
    except GatewayNotConfiguredError:
        app.state.payment_gateway = None
        logger.warning("Razorpay credentials missing; payment routes will answer 503.")

    yield

    if app.state.payment_gateway is not None:
        await app.state.payment_gateway.aclose()


# APP INITIALIZATION
allowed_hosts = settings.allowed_hosts.split(",")

app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(StorefrontError)
async def storefront_exception_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
    )


# ROUTERS
app.include_router(v1_router, prefix="/api/v1")


@app.exception_handler(Exception)
async def universal_exception_handler(request: Request, exc: Exception):
    # Log the real error for the developer
    logger.error(f"Unhandled error: {str(exc)}", exc_info=True)

    # Send a polite message to the user
    return JSONResponse(
        status_code=500, content={"detail": "An unexpected error occurred."}
    )


# RATE LIMITING
app.state.limiter = limiter
init_limiter_error_handlers(app)


# SECURITY MIDDLEWARES
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8000",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)


# REQUEST TRACING & SECURITY HEADERS
@app.middleware("http")
async def security_and_tracing_middleware(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    token = request_id_var.set(request_id)

    try:
        response = await call_next(request)

        response.headers["X-Request-Id"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"

        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=63072000; includeSubDomains"
            )

        return response

    except Exception as e:
        logger.error(f"Middleware caught crash: {e}", exc_info=True)
        return JSONResponse(
            status_code=500, content={"detail": "Internal Server Error"}
        )

    finally:
        request_id_var.reset(token)


# HEALTH CHECKS
@app.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_async_session),
    redis_client: Redis = Depends(get_redis),
):
    health_status = {"status": "healthy", "dependencies": {}}

    # 1. Check PostgreSQL
    try:
        await db.execute(text("SELECT 1"))
        health_status["dependencies"]["database"] = "ok"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["dependencies"]["database"] = str(e)

    # 2. Check Redis
    try:
        await redis_client.ping()
        health_status["dependencies"]["redis"] = "ok"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["dependencies"]["redis"] = str(e)

    health_status["dependencies"]["payment_gateway"] = (
        "ok" if getattr(app.state, "payment_gateway", None) else "not_configured"
    )

    return health_status
