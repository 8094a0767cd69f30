"""
Actor resolution for audit attribution

The identity layer issues bearer tokens; this module only verifies them and
turns the claims into the opaque Actor the engine copies onto audit records.
"""
import logging
from datetime import datetime, timedelta, UTC
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from rate_api.config import settings
from rate_core.models import Actor

logger = logging.getLogger(__name__)

security = HTTPBearer()


def create_access_token(actor_id: int, display_name: str = "",
                        expires_hours: Optional[int] = None) -> str:
    """Create a JWT carrying the actor id (sub) and display name"""
    expire = datetime.now(UTC) + timedelta(hours=expires_hours or settings.ACCESS_TOKEN_EXPIRE_HOURS)
    to_encode = {
        "sub": str(actor_id),
        "name": display_name,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode a JWT"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """Current actor from the bearer token"""
    payload = decode_token(credentials.credentials)
    try:
        actor_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject"
        )
    return Actor(id=actor_id, display_name=payload.get("name") or "")
