"""
Identity context from bearer tokens.

Authentication itself happens elsewhere; this service only decodes the JWT it
is handed and exposes who is calling (`sub`), for which organization (`org`)
and in which role.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from boxoffice.core.config import get_settings

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)

STAFF_ROLES = {"staff", "manager", "admin"}


@dataclass(frozen=True)
class Identity:
    user_id: int
    organization_id: int
    role: str = "customer"

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def create_access_token(
    user_id: int,
    organization_id: int,
    role: str = "customer",
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"sub": str(user_id), "org": organization_id, "role": role, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_identity(token: str) -> Optional[Identity]:
    """Returns the identity carried by the token, or None if invalid/expired."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return Identity(
            user_id=int(payload["sub"]),
            organization_id=int(payload["org"]),
            role=payload.get("role", "customer"),
        )
    except (JWTError, KeyError, TypeError, ValueError):
        return None


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    identity = decode_identity(credentials.credentials)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def require_staff(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required",
        )
    return identity
