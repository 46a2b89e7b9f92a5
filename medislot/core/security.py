from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import jwt
from jwt.exceptions import PyJWTError

from medislot.core.config import settings
from medislot.core.exceptions import AuthenticationError


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_actor_token(user_id: UUID, tenant_id: UUID, role: str) -> str:
    return create_access_token(
        {"sub": str(user_id), "tenant_id": str(tenant_id), "role": role}
    )


def decode_access_token(token: str) -> dict:
    """Decode a bearer token and check the claims the scheduler relies on."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except PyJWTError:
        raise AuthenticationError("Could not validate credentials")

    for claim in ("sub", "tenant_id", "role"):
        if not payload.get(claim):
            raise AuthenticationError("Could not validate credentials")

    try:
        payload["sub"] = UUID(payload["sub"])
        payload["tenant_id"] = UUID(payload["tenant_id"])
    except (TypeError, ValueError):
        raise AuthenticationError("Could not validate credentials")
    return payload
