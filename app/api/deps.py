from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.db import get_session
from app.core.security import Actor, decode_access_token

security = HTTPBearer(auto_error=False)

__all__ = ["get_session", "get_current_actor", "require_doctor_or_admin", "ensure_can_edit_availability"]


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Actor:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    actor = decode_access_token(credentials.credentials)
    if not actor:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


async def require_doctor_or_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not (actor.is_doctor or actor.is_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only doctors and admins can do this",
        )
    return actor


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return actor


def ensure_can_edit_availability(actor: Actor, doctor_id: str) -> None:
    """Doctors edit only their own schedule; admins edit any."""
    if actor.is_admin or (actor.is_doctor and actor.id == doctor_id):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not authorized to change this doctor's availability",
    )
