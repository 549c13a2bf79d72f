"""
Session Guard

Issues and verifies HS256 identity tokens and exposes the FastAPI
dependencies that protect user and admin routes. The role lives in the
token claim and is checked the same way on every admin route.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import get_config, get_jwt_secret
from .errors import Forbidden, Unauthorized
from .users import Role, User


security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """Resolved caller: who they are and what role the token grants"""
    user_id: str
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def create_access_token(user: User, expires_in: Optional[timedelta] = None) -> str:
    config = get_config()
    now = datetime.now(timezone.utc)
    expires_in = expires_in if expires_in is not None else timedelta(hours=config.jwt_expiry_hours)
    payload = {
        "sub": user.id,
        "email": user.email,
        "role": user.role.value,
        "iat": now,
        "exp": now + expires_in
    }
    return jwt.encode(payload, get_jwt_secret(), algorithm=config.jwt_algorithm)


def decode_access_token(token: Optional[str]) -> Identity:
    """
    Verify a token and return the identity it carries.

    Raises:
        Unauthorized: token absent, expired, tampered with or missing claims
    """
    if not token:
        raise Unauthorized("Not authenticated")
    try:
        payload = jwt.decode(token, get_jwt_secret(), algorithms=[get_config().jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")

    user_id = payload.get("sub")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise Unauthorized("Invalid token")
    if not user_id:
        raise Unauthorized("Invalid token")

    return Identity(user_id=user_id, email=payload.get("email", ""), role=role)


def get_current_identity(request: Request,
                         credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Identity:
    """Bearer header first, then the session cookie"""
    token = credentials.credentials if credentials else None
    if not token:
        token = request.cookies.get(get_config().session_cookie_name)
    return decode_access_token(token)


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Admin access required")
    return identity
