from datetime import datetime, timedelta, timezone
from typing import Optional

from firebase_admin import auth as firebase_auth
from jose import jwt, JWTError
import structlog

from invoicehub.config import settings
from invoicehub.services.firebase_app import get_firebase_app
from invoicehub.services.secrets import get_secret

logger = structlog.get_logger()


def _signing_key() -> str:
    if settings.USE_SECRET_MANAGER:
        return get_secret("jwt-secret-key")
    return settings.JWT_SECRET_KEY


# ---------- token generation ----------

def create_access_token(
    user_id: str,
    email: str,
    organization_id: Optional[str] = None,
    role: str = "reviewer",
    display_name: Optional[str] = None,
) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": "access",
    }
    if organization_id:
        claims["organization_id"] = organization_id
    if display_name:
        claims["name"] = display_name
    return jwt.encode(claims, _signing_key(), algorithm=settings.JWT_ALGORITHM)


# ---------- token verification ----------

def verify_access_token(token: str) -> dict:
    """Verify a service-issued access token. Raises JWTError on failure."""
    payload = jwt.decode(token, _signing_key(), algorithms=[settings.JWT_ALGORITHM])
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    return payload


def verify_firebase_token(token: str) -> dict:
    """Verify a Firebase ID token (blocking; performs a certificate fetch)."""
    return firebase_auth.verify_id_token(token, app=get_firebase_app())
