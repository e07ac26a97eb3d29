from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from freight.config import get_settings
from freight.schemas.schemas import Actor, RoleEnum

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    """Sign a JWT with the configured secret (HS256). Expects `sub` and `role` claims."""
    claims = dict(data)
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    claims.setdefault("exp", datetime.now(timezone.utc) + timedelta(minutes=minutes))
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """Decode and validate the JWT Bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


async def get_current_actor(token_data: dict = Depends(get_current_user)) -> Actor:
    """Build the acting party from `sub`, `role` and optional `name` claims."""
    user_id = token_data.get("sub")
    try:
        role = RoleEnum(token_data.get("role"))
    except ValueError:
        role = None
    if not user_id or role is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return Actor(id=user_id, role=role, name=token_data.get("name"))


async def get_current_trucker(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role not in (RoleEnum.trucker, RoleEnum.admin):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Trucker access required")
    return actor
