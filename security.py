"""
Password hashing, JWT issuance and request guards.

`authenticate` and `require_role` are plain callables that work on a bearer
token and a Principal; the FastAPI dependencies at the bottom only adapt them
to `Depends`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import settings
from errors import AuthError, PermissionDenied

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def _create_token(user: dict, token_type: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "type": token_type,
        "iss": settings.JWT_ISSUER,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(user, ACCESS, expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(user, REFRESH, expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))


def decode_token(token: str, expected_type: str = ACCESS) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM], issuer=settings.JWT_ISSUER)
    except JWTError:
        raise AuthError("Invalid or expired token")
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise AuthError("Invalid token")
    return payload


@dataclass(frozen=True)
class Principal:
    """Caller identity as embedded in a verified access token."""
    id: str
    email: Optional[str]
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def authenticate(token: Optional[str]) -> Principal:
    if not token or not token.strip():
        raise AuthError("No token found")
    payload = decode_token(token.strip(), ACCESS)
    return Principal(id=payload["sub"], email=payload.get("email"), role=payload.get("role", "user"))


def require_role(role: str) -> Callable[[Principal], Principal]:
    """Build a guard that lets through only principals holding `role`."""
    def guard(principal: Principal) -> Principal:
        if principal.role != role:
            logger.info("Role gate: %s (%s) denied, needs %s", principal.id, principal.role, role)
            raise PermissionDenied(f"Access denied: {role} role required")
        return principal
    return guard


# FastAPI adapters

# Missing or non-bearer headers yield None; authenticate turns that into a 401
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/login", auto_error=False)


def current_principal(token: Optional[str] = Depends(oauth2_scheme)) -> Principal:
    return authenticate(token)


def role_required(role: str):
    guard = require_role(role)

    def dependency(principal: Principal = Depends(current_principal)) -> Principal:
        return guard(principal)

    return dependency


require_admin = role_required("admin")
require_user = role_required("user")
