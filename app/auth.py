"""
Bearer JWT authentication for operator endpoints.
Tokens are issued by the identity provider; we verify the signature and resolve the user row.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models import User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=12))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.AUTH_ALGORITHM)


def decode_access_token(token: str) -> dict:
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.AUTH_ALGORITHM],
        audience=settings.JWT_AUDIENCE or None,
        options=options,
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not credentials.credentials:
        raise unauthorized
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        raise unauthorized
    user_id = payload.get("sub")
    if not user_id:
        raise unauthorized
    user = db.query(User).filter(User.id == str(user_id)).first()
    if user is None:
        raise unauthorized
    return user


def require_organization(user: User) -> str:
    """Organization id of the caller; 403 when the user is not attached to one."""
    if not user.organization_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User has no organization")
    return user.organization_id
