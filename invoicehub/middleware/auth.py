import asyncio

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import exceptions as firebase_exceptions
from jose import JWTError
import structlog

from invoicehub.config import settings
from invoicehub.context import AppContext, get_context
from invoicehub.services.auth_service import verify_access_token, verify_firebase_token

logger = structlog.get_logger()

security = HTTPBearer()


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error": {
                "code": "AUTH_TOKEN_INVALID",
                "message": "Invalid or expired token",
            }
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _firebase_user(token: str, ctx: AppContext) -> dict:
    try:
        claims = await asyncio.to_thread(verify_firebase_token, token)
    except (ValueError, firebase_exceptions.FirebaseError) as e:
        logger.warning("auth_token_invalid", provider="firebase", error=str(e))
        raise _unauthorized()

    profile = await ctx.users.get(claims["uid"])
    return {
        "user_id": claims["uid"],
        "email": claims.get("email") or (profile.email if profile else None),
        "display_name": (profile.display_name if profile else None) or claims.get("name"),
        "organization_id": profile.organization if profile else None,
        "role": profile.role if profile else "reviewer",
    }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    ctx: AppContext = Depends(get_context),
) -> dict:
    """FastAPI dependency: verify the bearer token and return the caller as a dict."""
    token = credentials.credentials
    if settings.AUTH_PROVIDER == "firebase":
        return await _firebase_user(token, ctx)

    try:
        payload = verify_access_token(token)
    except JWTError as e:
        logger.warning("auth_token_invalid", provider="jwt", error=str(e))
        raise _unauthorized()

    # A stored profile is authoritative over the claims minted with the token
    profile = await ctx.users.get(payload["sub"])
    return {
        "user_id": payload["sub"],
        "email": payload.get("email"),
        "display_name": payload.get("name"),
        "organization_id": profile.organization if profile else payload.get("organization_id"),
        "role": profile.role if profile else payload.get("role", "reviewer"),
    }
