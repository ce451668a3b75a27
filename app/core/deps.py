import logging
from typing import Callable, Type, TypeVar

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import AuthenticationFailed, GatewayNotConfiguredError, NotAuthorized
from app.core.security import decode_access_token
from app.db.sessions import get_async_session
from app.models import User
from app.services.gateway.base import PaymentGateway
from app.services.payment_service import PaymentService
from app.services.settlement_service import SettlementService


# Initialize logger for security events
logger = logging.getLogger(__name__)

# HTTPBearer is used for "Authorization: Bearer <token>" headers
oauth2_scheme = HTTPBearer(auto_error=False)

T = TypeVar("T")


# Create ONE Redis client (connection pool)
redis_client = Redis.from_url(
    settings.redis_url,
    decode_responses=True,  # returns str instead of bytes
)


async def get_current_user(
    token: HTTPAuthorizationCredentials = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_async_session),
) -> User:
    """
    Resolve the acting user from a bearer JWT.
    """
    if not token:
        raise AuthenticationFailed("Not authenticated")

    user_id = decode_access_token(token.credentials)

    user = await session.get(User, user_id)

    if not user:
        logger.warning(f"Auth Failure: User {user_id} not found in database.")
        raise AuthenticationFailed("User not found")

    if not user.is_active:
        raise NotAuthorized("User account disabled")

    return user


# SERVICE DEPENDENCIES

async def get_redis() -> Redis:
    return redis_client


def get_payment_gateway(request: Request) -> PaymentGateway:
    """The gateway built at start-up, or 503 when credentials were missing."""
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        raise GatewayNotConfiguredError()
    return gateway


def get_service(service_cls: Type[T]) -> Callable[..., T]:
    def _get(db: AsyncSession = Depends(get_async_session)) -> T:
        return service_cls(db)

    return _get


def get_payment_service(
    db: AsyncSession = Depends(get_async_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentService:
    return PaymentService(db, gateway)


def get_settlement_service(
    db: AsyncSession = Depends(get_async_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    redis: Redis = Depends(get_redis),
) -> SettlementService:
    return SettlementService(db, gateway, redis)
