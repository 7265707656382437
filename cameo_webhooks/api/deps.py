"""
Shared FastAPI dependencies.
"""
import logging

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cameo_webhooks.container import Container

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


def get_container(request: Request) -> Container:
    return request.app.state.container


async def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer),
    container: Container = Depends(get_container),
) -> str:
    """
    Validate an admin bearer JWT (HS256) and return the admin email.
    The token's email claim must be listed in ADMIN_EMAILS.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    settings = container.settings
    if not settings.admin_jwt_secret:
        logger.error("ADMIN_JWT_SECRET not set - admin API disabled")
        raise HTTPException(status_code=503, detail="Admin API not configured")

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.admin_jwt_secret,
            algorithms=["HS256"],
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    email = str(payload.get("email") or "").strip().lower()
    if not email or email not in settings.admin_email_list:
        logger.warning("Admin access denied for %s", email or "<no email>")
        raise HTTPException(status_code=403, detail="Admin access required")
    return email
