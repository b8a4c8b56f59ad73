import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User


http_bearer = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"
TECHNICIAN_ROLE = "technician"


def create_access_token(user_id: str, roles: Optional[List[str]] = None, ttl_seconds: Optional[int] = None) -> str:
    """Issue a bearer token. Used by the auth service, scripts and tests."""
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds or settings.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
        "roles": roles or [],
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    return user


def role_names(user: User) -> set:
    return {(r.name or "").lower() for r in user.roles}


def is_admin(user: User) -> bool:
    return ADMIN_ROLE in role_names(user)


def is_technician(user: User) -> bool:
    """Technician without admin capability; admins are never restricted."""
    return TECHNICIAN_ROLE in role_names(user) and not is_admin(user)


def primary_role(user: User) -> str:
    if is_admin(user):
        return ADMIN_ROLE
    if is_technician(user):
        return TECHNICIAN_ROLE
    return "user"


def require_roles(*required_roles: str):
    def _dep(user: User = Depends(get_current_user)):
        if not set(required_roles).issubset(role_names(user)):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep
