"""
Admin authentication for the console endpoints.

Bearer token -> user id (JWT issued by the hosted auth provider) -> admins
table membership. A bad or missing credential is "unauthorized"; a valid
user who is not an admin is "forbidden".
"""
from typing import Optional

from fastapi import Depends, Header, Request
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models.admin import Admin
from app.obs.errors import AuthenticationError, AuthorizationError, ConfigurationError
from app.obs.logging import get_logger

logger = get_logger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Unauthorized")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthenticationError("Unauthorized")
    return token


def verify_access_token(token: str) -> str:
    """Decode the access token and return its subject (the auth user id)."""
    if not settings.AUTH_JWT_SECRET:
        raise ConfigurationError("Auth secret is not configured")

    try:
        claims = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            audience=settings.AUTH_JWT_AUDIENCE or None,
            options={"verify_aud": bool(settings.AUTH_JWT_AUDIENCE)},
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Admin access token has expired")
        raise AuthenticationError("Invalid token")
    except JWTError as e:
        logger.warning(f"Failed to verify admin access token: {e}")
        raise AuthenticationError("Invalid token")

    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token")
    return str(user_id)


def is_admin(db: Session, user_id: str) -> bool:
    return db.query(Admin.id).filter(Admin.user_id == user_id).first() is not None


def require_admin(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: Session = Depends(get_db),
) -> str:
    """FastAPI dependency guarding every admin route; returns the admin's user id."""
    token = extract_bearer_token(authorization)
    user_id = verify_access_token(token)

    if not is_admin(db, user_id):
        logger.warning(
            "Non-admin user attempted an admin operation",
            extra={'user_id': user_id, 'route': request.url.path},
        )
        raise AuthorizationError("Forbidden")

    request.state.user_id = user_id
    return user_id
