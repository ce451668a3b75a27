import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from jose import JWTError, jwt

from app.core.config import settings
from app.core.exceptions import AuthenticationFailed


logger = logging.getLogger(__name__)


# ----- JWT --------

def create_access_token(user_id: UUID, expires_minutes: int | None = None) -> str:
    """
    Generates a short-lived JWT access token.

    Token issuance belongs to the identity service; this helper exists so
    scripts and tests can mint tokens the API accepts.

    Payload:
    - sub: The User UUID
    - type: "access"
    - iat / exp: issue and expiry timestamps
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )

    payload = {
        "sub": str(user_id),
        "type": "access",
        "iat": now,
        "exp": expire,
    }

    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> UUID:
    """Validate an access token and return the user id it was issued for."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"leeway": 30},
        )
    except JWTError:
        logger.warning("JWT Decode Failed")
        raise AuthenticationFailed()

    if payload.get("type") != "access":
        raise AuthenticationFailed("Invalid token type")

    try:
        return UUID(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationFailed("Invalid user identifier format")


# ----- HMAC SIGNATURES --------

def hmac_sha256_hex(secret: str, message: str | bytes) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, supplied: str | None) -> bool:
    """
    Constant-time comparison of two hex signatures.

    Comparison is exact: a signature differing in any character,
    including letter case, does not match.
    """
    if not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))
